"""
Standalone settlement scheduler process.

    python -m kissmint.scheduler.main
"""

import asyncio
import signal
from typing import List, Optional

import structlog

from kissmint.core.config import settings
from kissmint.core.logging import setup_logging
from kissmint.services.container import ServiceContainer
from .settlement_scheduler import SettlementScheduler

logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Owns the service container and the scheduler loop."""

    def __init__(self, container: Optional[ServiceContainer] = None):
        self.container = container or ServiceContainer()
        self.scheduler: Optional[SettlementScheduler] = None
        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def initialize(self) -> None:
        logger.info("Initializing scheduler service")
        await self.container.initialize()
        self.scheduler = SettlementScheduler(self.container.distribution_service)
        logger.info("Scheduler service initialized")

    async def start(self) -> None:
        logger.info("Starting scheduler service")
        self.running = True
        self.tasks.append(asyncio.create_task(self.scheduler.start()))
        self.tasks.append(asyncio.create_task(self._periodic_health_check()))
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def stop(self) -> None:
        if not self.running and not self.tasks:
            return
        logger.info("Stopping scheduler service")
        self.running = False

        if self.scheduler:
            await self.scheduler.stop()
        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await self.container.close()
        logger.info("Scheduler service stopped")

    async def _periodic_health_check(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(300)
                if not self.running:
                    break
                logger.info("Scheduler health check", scheduler=await self.scheduler.health_check())
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main() -> None:
    setup_logging()

    if not settings.scheduler_enabled:
        logger.warning("Scheduler disabled by configuration, exiting")
        return

    service = SchedulerMain()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, lambda s=signum: asyncio.create_task(_shutdown(service, s)))

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await service.stop()


async def _shutdown(service: SchedulerMain, signum: int) -> None:
    logger.info("Received signal, shutting down", signal=signum)
    await service.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
