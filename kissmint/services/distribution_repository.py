"""
Repository for the prize settlement audit trail.
"""

from decimal import Decimal
from typing import Any, List, Optional, Set, Tuple

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from kissmint.core.database import SessionFactory, get_async_session
from kissmint.core.exceptions import DatabaseError, DistributionNotFoundError
from kissmint.core.periods import PoolType
from kissmint.models.base import utcnow
from kissmint.models.distribution import (
    DistributionSummary, PrizeDistributionLog, SkippedPayoutLog,
    DistributionStatus, PayoutStatus, SkipReason
)
from .payout_service import from_smallest_unit
from .types import PlannedPayout, PayoutResult, SkippedPayout

logger = structlog.get_logger(__name__)


class DistributionRepository:
    """
    Durable reads and writes of distribution summaries and payout rows.

    Summaries are updated in place and never deleted; payout and skip rows
    are insert-only.
    """

    def __init__(self, session_factory: SessionFactory = get_async_session):
        self.session_factory = session_factory
        self.logger = logger.bind(service="distribution_repository")

    def _db_error(self, action: str, error: Exception, **context: Any) -> DatabaseError:
        self.logger.error(f"Failed to {action}", error=str(error), **context)
        return DatabaseError(f"Failed to {action}", {"error": str(error), **context})

    async def create_summary(
        self,
        pool_type: PoolType,
        period_identifier: str,
        currency: str,
        retry_of_id: Optional[str] = None
    ) -> DistributionSummary:
        """Write the PENDING anchor row of a new attempt."""
        summary = DistributionSummary(
            pool_type=PoolType(pool_type).value,
            period_identifier=period_identifier,
            status=DistributionStatus.PENDING,
            total_prize_pool_claimed=Decimal("0"),
            total_distributed_amount=Decimal("0"),
            number_of_winners=0,
            pool_claimed=False,
            retry_of_id=retry_of_id,
            currency=currency,
            started_at=utcnow(),
        )
        try:
            async with self.session_factory() as db:
                db.add(summary)
        except SQLAlchemyError as e:
            raise self._db_error(
                "create distribution summary", e,
                pool_type=summary.pool_type, period_identifier=period_identifier
            ) from e

        self.logger.info(
            "Distribution summary created",
            summary_id=summary.id,
            pool_type=summary.pool_type,
            period_identifier=period_identifier,
            retry_of_id=retry_of_id
        )
        return summary

    async def update_summary(self, summary_id: str, **fields: Any) -> DistributionSummary:
        """Set the given columns on a summary and return the stored row."""
        try:
            async with self.session_factory() as db:
                summary = await db.get(DistributionSummary, summary_id)
                if summary is None:
                    raise DistributionNotFoundError(summary_id)
                for name, value in fields.items():
                    setattr(summary, name, value)
                if "status" in fields and DistributionStatus(fields["status"]).is_terminal:
                    summary.completed_at = fields.get("completed_at") or utcnow()
        except SQLAlchemyError as e:
            raise self._db_error("update distribution summary", e, summary_id=summary_id) from e
        return summary

    async def get_summary(self, summary_id: str) -> Optional[DistributionSummary]:
        try:
            async with self.session_factory() as db:
                return await db.get(DistributionSummary, summary_id)
        except SQLAlchemyError as e:
            raise self._db_error("get distribution summary", e, summary_id=summary_id) from e

    async def get_latest_summary(
        self,
        pool_type: PoolType,
        period_identifier: str
    ) -> Optional[DistributionSummary]:
        """Most recent attempt for a period, if any."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(DistributionSummary)
                    .where(
                        DistributionSummary.pool_type == PoolType(pool_type).value,
                        DistributionSummary.period_identifier == period_identifier
                    )
                    .order_by(
                        DistributionSummary.started_at.desc(),
                        DistributionSummary.created_at.desc()
                    )
                    .limit(1)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._db_error(
                "get latest distribution summary", e,
                pool_type=str(pool_type), period_identifier=period_identifier
            ) from e

    async def get_claimed_pool(
        self,
        pool_type: PoolType,
        period_identifier: str
    ) -> Optional[Decimal]:
        """Budget claimed by an earlier attempt for this period, or None if never claimed."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(DistributionSummary.total_prize_pool_claimed)
                    .where(
                        DistributionSummary.pool_type == PoolType(pool_type).value,
                        DistributionSummary.period_identifier == period_identifier,
                        DistributionSummary.pool_claimed.is_(True)
                    )
                    .order_by(DistributionSummary.started_at.asc())
                    .limit(1)
                )
                claimed = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._db_error(
                "get claimed pool", e,
                pool_type=str(pool_type), period_identifier=period_identifier
            ) from e
        return Decimal(str(claimed)) if claimed is not None else None

    async def get_paid_user_ids(self, pool_type: PoolType, period_identifier: str) -> Set[str]:
        """Users already paid successfully by any attempt for this period."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(PrizeDistributionLog.user_id)
                    .join(
                        DistributionSummary,
                        PrizeDistributionLog.distribution_summary_id == DistributionSummary.id
                    )
                    .where(
                        DistributionSummary.pool_type == PoolType(pool_type).value,
                        DistributionSummary.period_identifier == period_identifier,
                        PrizeDistributionLog.status == PayoutStatus.SUCCESS
                    )
                )
                return {row[0] for row in result.all()}
        except SQLAlchemyError as e:
            raise self._db_error(
                "get paid users", e,
                pool_type=str(pool_type), period_identifier=period_identifier
            ) from e

    async def log_payouts(
        self,
        summary_id: str,
        planned: List[PlannedPayout],
        results: List[PayoutResult],
        decimals: int
    ) -> List[PrizeDistributionLog]:
        """One row per attempted payout, planned and results aligned by position."""
        distributed_at = utcnow()
        rows = []
        for payout, result in zip(planned, results):
            rows.append(PrizeDistributionLog(
                distribution_summary_id=summary_id,
                user_id=payout.user_id,
                wallet_address=payout.wallet_address,
                rank=payout.rank,
                score=payout.score,
                prize_amount=from_smallest_unit(payout.prize_amount_units, decimals),
                prize_amount_units=str(payout.prize_amount_units),
                transaction_reference=result.transaction_reference,
                status=result.status,
                error_message=result.error,
                distributed_at=distributed_at if result.succeeded else None,
            ))

        try:
            async with self.session_factory() as db:
                db.add_all(rows)
        except SQLAlchemyError as e:
            raise self._db_error("log payouts", e, summary_id=summary_id) from e
        return rows

    async def log_skipped_payouts(
        self,
        summary_id: str,
        skipped: List[SkippedPayout]
    ) -> List[SkippedPayoutLog]:
        if not skipped:
            return []
        rows = [
            SkippedPayoutLog(
                distribution_summary_id=summary_id,
                user_id=s.user_id,
                rank=s.rank,
                score=s.score,
                prize_amount=s.prize_amount,
                reason=SkipReason(s.reason),
            )
            for s in skipped
        ]
        try:
            async with self.session_factory() as db:
                db.add_all(rows)
        except SQLAlchemyError as e:
            raise self._db_error("log skipped payouts", e, summary_id=summary_id) from e
        return rows

    async def list_summaries(
        self,
        pool_type: Optional[PoolType] = None,
        status: Optional[DistributionStatus] = None,
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[DistributionSummary], int]:
        """Page of summaries, newest first, plus the total matching count."""
        conditions = []
        if pool_type is not None:
            conditions.append(DistributionSummary.pool_type == PoolType(pool_type).value)
        if status is not None:
            conditions.append(DistributionSummary.status == DistributionStatus(status))

        try:
            async with self.session_factory() as db:
                total = await db.scalar(
                    select(func.count()).select_from(DistributionSummary).where(*conditions)
                )
                result = await db.execute(
                    select(DistributionSummary)
                    .where(*conditions)
                    .order_by(DistributionSummary.started_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all()), int(total or 0)
        except SQLAlchemyError as e:
            raise self._db_error("list distribution summaries", e) from e

    async def get_payouts(self, summary_id: str) -> List[PrizeDistributionLog]:
        """Payout rows of one attempt, rank ascending."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(PrizeDistributionLog)
                    .where(PrizeDistributionLog.distribution_summary_id == summary_id)
                    .order_by(PrizeDistributionLog.rank.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._db_error("get payouts", e, summary_id=summary_id) from e

    async def get_skipped_payouts(self, summary_id: str) -> List[SkippedPayoutLog]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(SkippedPayoutLog)
                    .where(SkippedPayoutLog.distribution_summary_id == summary_id)
                    .order_by(SkippedPayoutLog.rank.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._db_error("get skipped payouts", e, summary_id=summary_id) from e
