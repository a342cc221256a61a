"""
Fire-and-forget settlement runner for request handlers.

The triggering request is answered before settlement finishes; the outcome is
read back from the distribution summary, so failures here are only logged.
"""

from typing import Any, Awaitable, Callable

import structlog

from kissmint.core.exceptions import SettlementInProgressError

logger = structlog.get_logger(__name__)


async def run_settlement(settle: Callable[..., Awaitable[Any]], *args: Any) -> None:
    try:
        summary = await settle(*args)
    except SettlementInProgressError as e:
        logger.warning("Background settlement not started", reason=e.message, **e.details)
        return
    except Exception as e:
        logger.error("Background settlement failed", args=[str(a) for a in args], error=str(e), exc_info=True)
        return

    logger.info(
        "Background settlement finished",
        summary_id=summary.id,
        status=summary.status.value,
        pool_type=summary.pool_type,
        period_identifier=summary.period_identifier
    )
