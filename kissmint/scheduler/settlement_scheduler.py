"""
Periodic settlement trigger.

Every tick works out which daily and weekly periods are due for settlement
and starts each one the first time it becomes due. Settlement itself is
idempotent per period, so a restarted scheduler re-triggering a period that
already settled is a no-op.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from kissmint.core.config import settings
from kissmint.core.exceptions import SettlementInProgressError
from kissmint.core.periods import PoolType, settlement_period
from kissmint.services.settlement_service import PrizeDistributionService

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledTask:
    """A named coroutine run on a fixed interval, with run/error counters."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = True,
        clock: Clock = utc_clock
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.clock = clock
        self.last_run: Optional[datetime] = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None
        self.next_run = clock()
        if not run_immediately:
            self.schedule_next_run()

    def should_run(self) -> bool:
        return self.enabled and self.clock() >= self.next_run

    def schedule_next_run(self) -> None:
        self.next_run = self.clock() + timedelta(seconds=self.interval_seconds)

    async def run(self) -> None:
        """Execute once. Errors are counted and logged, never raised."""
        start_time = self.clock()
        try:
            await self.func()
            self.last_run = start_time
            self.run_count += 1
            logger.debug("Task completed", task=self.name, run_count=self.run_count)
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.error("Task failed", task=self.name, error=str(e), error_count=self.error_count)
        finally:
            self.schedule_next_run()

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat(),
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class SettlementScheduler:
    """Triggers daily and weekly settlements as their periods close."""

    def __init__(
        self,
        distribution_service: PrizeDistributionService,
        interval: Optional[int] = None,
        clock: Clock = utc_clock
    ):
        self.distribution_service = distribution_service
        self.interval = interval if interval is not None else settings.scheduler_interval
        self.clock = clock
        self.running = False
        self.last_triggered: Dict[PoolType, Optional[str]] = {
            PoolType.DAILY: None,
            PoolType.WEEKLY: None,
        }
        self.tasks: Dict[str, ScheduledTask] = {}

        for pool_type in PoolType:
            self.register_task(
                f"{pool_type.value}_settlement",
                self._settlement_task(pool_type),
                interval_seconds=self.interval,
            )

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = True
    ) -> None:
        self.tasks[name] = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately,
            clock=self.clock,
        )
        logger.info("Registered task", task=name, interval=interval_seconds)

    def _settlement_task(self, pool_type: PoolType) -> Callable[[], Awaitable[None]]:
        async def run() -> None:
            await self.trigger_if_due(pool_type)
        return run

    async def trigger_if_due(self, pool_type: PoolType) -> bool:
        """Settle the due period for `pool_type` unless it was already triggered."""
        period = settlement_period(pool_type, self.clock())
        if self.last_triggered[pool_type] == period:
            return False

        # Recorded up front: a failed attempt is retried by an operator, not every tick
        self.last_triggered[pool_type] = period
        logger.info("Triggering settlement", pool_type=pool_type.value, period_identifier=period)
        try:
            summary = await self.distribution_service.settle_prizes_for_period(pool_type, period)
        except SettlementInProgressError:
            logger.info(
                "Settlement already running elsewhere",
                pool_type=pool_type.value,
                period_identifier=period
            )
            return False

        logger.info(
            "Scheduled settlement finished",
            pool_type=pool_type.value,
            period_identifier=period,
            summary_id=summary.id,
            status=summary.status.value
        )
        return True

    async def run_pending_tasks(self) -> None:
        # Settlements share the payout wallet, so they run one at a time
        for task in self.tasks.values():
            if task.should_run():
                await task.run()

    async def start(self) -> None:
        logger.info("Starting settlement scheduler", interval=self.interval)
        self.running = True

        while self.running:
            try:
                await self.run_pending_tasks()
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Settlement scheduler loop error", error=str(e))
                await asyncio.sleep(1)

        logger.info("Settlement scheduler stopped")

    async def stop(self) -> None:
        logger.info("Stopping settlement scheduler")
        self.running = False

    async def health_check(self) -> Dict[str, Any]:
        total_tasks = len(self.tasks)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)
        return {
            "healthy": self.running and tasks_with_errors < total_tasks,
            "running": self.running,
            "total_tasks": total_tasks,
            "tasks_with_errors": tasks_with_errors,
            "last_triggered": {p.value: v for p, v in self.last_triggered.items()},
            "tasks": {name: task.status() for name, task in self.tasks.items()},
        }
