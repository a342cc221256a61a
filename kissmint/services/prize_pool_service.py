"""
Prize pool ledger.

Live pool values live in Redis keyed by pool type and are only ever changed by
additive contributions (purchase revenue) and the atomic take-and-zero claim
performed at settlement. Every purchase split is also logged durably.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from kissmint.cache.redis_client import RedisClient
from kissmint.cache.cache_keys import KeyBuilder, get_key_builder
from kissmint.core.config import settings
from kissmint.core.database import SessionFactory, get_async_session
from kissmint.core.exceptions import (
    LedgerError, DatabaseError, ValidationError, DuplicatePurchaseError
)
from kissmint.core.periods import PoolType
from kissmint.models.revenue import RevenueAllocationLog
from .types import RevenueSplit, PrizePoolInfo

logger = structlog.get_logger(__name__)


# Share of each purchase's revenue; treasury takes whatever rounding leaves
DAILY_POOL_PERCENT = Decimal("0.09")
WEEKLY_POOL_PERCENT = Decimal("0.21")

CENTS = Decimal("0.01")


def calculate_revenue_split(total_revenue) -> RevenueSplit:
    """
    Split purchase revenue 9% daily pool / 21% weekly pool / 70% treasury.

    Pool contributions are rounded half-up to 2 decimals. The treasury share is
    the remainder, so the three parts always add up to the input exactly.
    """
    total = Decimal(str(total_revenue)).quantize(CENTS, rounding=ROUND_HALF_UP)
    daily = (total * DAILY_POOL_PERCENT).quantize(CENTS, rounding=ROUND_HALF_UP)
    weekly = (total * WEEKLY_POOL_PERCENT).quantize(CENTS, rounding=ROUND_HALF_UP)
    treasury = total - daily - weekly
    return RevenueSplit(
        total_revenue=total,
        daily_contribution=daily,
        weekly_contribution=weekly,
        treasury_share=treasury,
    )


def _sanitize_pool_value(raw: Optional[str]) -> float:
    """Absent, unparsable, negative or non-finite reads count as an empty pool."""
    if raw is None:
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Unparsable prize pool value", raw=raw)
        return 0.0
    if not math.isfinite(value) or value < 0:
        logger.warning("Prize pool value clamped to zero", raw=raw)
        return 0.0
    return value


class PrizePoolManager:
    """Adds revenue to prize pools and claims them for settlement."""

    def __init__(
        self,
        redis_client: RedisClient,
        session_factory: SessionFactory = get_async_session,
        key_builder: Optional[KeyBuilder] = None
    ):
        self.redis = redis_client
        self.session_factory = session_factory
        self.keys = key_builder or get_key_builder()
        self.logger = logger.bind(service="prize_pool_manager")

    async def add_to_pool(self, pool_type: PoolType, amount: float) -> Optional[float]:
        """Atomically add `amount` to a pool. Non-positive amounts are ignored."""
        pool_type = PoolType(pool_type)
        if amount is None or amount <= 0:
            self.logger.warning(
                "Ignoring non-positive pool contribution",
                pool_type=pool_type.value,
                amount=amount
            )
            return None

        key = self.keys.prize_pool_key(pool_type)
        try:
            new_value = await self.redis.incrbyfloat(key, float(amount))
        except Exception as e:
            raise LedgerError(
                f"Failed to add to {pool_type.value} prize pool",
                {"pool_type": pool_type.value, "amount": float(amount), "error": str(e)}
            ) from e

        self.logger.info(
            "Added to prize pool",
            pool_type=pool_type.value,
            amount=float(amount),
            new_value=new_value
        )
        return new_value

    async def get_pool_value(self, pool_type: PoolType) -> float:
        """Current pool value; never negative."""
        pool_type = PoolType(pool_type)
        try:
            raw = await self.redis.read(self.keys.prize_pool_key(pool_type))
        except Exception as e:
            raise LedgerError(
                f"Failed to read {pool_type.value} prize pool",
                {"pool_type": pool_type.value, "error": str(e)}
            ) from e
        return _sanitize_pool_value(raw)

    async def claim_pool(self, pool_type: PoolType) -> float:
        """
        Take the whole pool and reset it to zero in one atomic step.

        The returned value is the pool before the reset and becomes the budget
        of the settlement attempt that claimed it.
        """
        pool_type = PoolType(pool_type)
        key = self.keys.prize_pool_key(pool_type)
        try:
            raw = await self.redis.getset_zero(key)
        except Exception as e:
            raise LedgerError(
                f"Failed to claim {pool_type.value} prize pool",
                {"pool_type": pool_type.value, "error": str(e)}
            ) from e

        claimed = _sanitize_pool_value(raw)
        self.logger.info("Claimed prize pool", pool_type=pool_type.value, claimed=claimed)
        return claimed

    async def add_game_pass_revenue_to_pools(
        self,
        purchase_id: str,
        total_revenue: Decimal,
        daily_contribution: Decimal,
        weekly_contribution: Decimal,
        treasury_share: Decimal
    ) -> RevenueAllocationLog:
        """
        Apply a purchase's pool contributions, then log the full split.

        If the audit write fails the pool increments stay applied and the error
        is raised to the caller.
        """
        if daily_contribution > 0:
            await self.add_to_pool(PoolType.DAILY, float(daily_contribution))
        if weekly_contribution > 0:
            await self.add_to_pool(PoolType.WEEKLY, float(weekly_contribution))

        entry = RevenueAllocationLog(
            purchase_id=purchase_id,
            total_revenue=Decimal(str(total_revenue)),
            daily_contribution=Decimal(str(daily_contribution)),
            weekly_contribution=Decimal(str(weekly_contribution)),
            treasury_share=Decimal(str(treasury_share)),
            allocated_at=datetime.now(timezone.utc),
        )
        try:
            async with self.session_factory() as db:
                db.add(entry)
        except SQLAlchemyError as e:
            self.logger.error(
                "Revenue allocation log write failed after pool update",
                purchase_id=purchase_id,
                error=str(e)
            )
            raise DatabaseError(
                "Failed to log revenue allocation",
                {"purchase_id": purchase_id, "error": str(e)}
            ) from e

        self.logger.info(
            "Revenue allocated to prize pools",
            purchase_id=purchase_id,
            total_revenue=str(total_revenue),
            daily=str(daily_contribution),
            weekly=str(weekly_contribution),
            treasury=str(treasury_share)
        )
        return entry

    async def is_purchase_allocated(self, purchase_id: str) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(RevenueAllocationLog.id).where(
                        RevenueAllocationLog.purchase_id == purchase_id
                    )
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to check revenue allocation",
                {"purchase_id": purchase_id, "error": str(e)}
            ) from e

    async def allocate_purchase_revenue(self, purchase_id: str, total_revenue) -> RevenueSplit:
        """Validate a completed purchase, split its revenue and apply it."""
        if not purchase_id or not isinstance(purchase_id, str) or not purchase_id.strip():
            raise ValidationError("Missing or invalid purchaseId")
        if isinstance(total_revenue, bool) or not isinstance(total_revenue, (int, float, Decimal)):
            raise ValidationError("Missing or invalid totalRevenue")
        if not math.isfinite(float(total_revenue)) or total_revenue <= 0:
            raise ValidationError("Missing or invalid totalRevenue")

        purchase_id = purchase_id.strip()
        if await self.is_purchase_allocated(purchase_id):
            raise DuplicatePurchaseError(purchase_id)

        split = calculate_revenue_split(total_revenue)
        await self.add_game_pass_revenue_to_pools(
            purchase_id,
            split.total_revenue,
            split.daily_contribution,
            split.weekly_contribution,
            split.treasury_share,
        )
        return split

    def get_base_prize(self, pool_type: PoolType) -> float:
        if PoolType(pool_type) == PoolType.DAILY:
            return float(settings.daily_base_prize)
        return float(settings.weekly_base_prize)

    async def get_current_prize_pools(self) -> List[PrizePoolInfo]:
        """Displayed pools: configured base prize plus the live bonus."""
        now = datetime.now(timezone.utc)
        pools = []
        for pool_type in PoolType:
            base = self.get_base_prize(pool_type)
            bonus = await self.get_pool_value(pool_type)
            pools.append(
                PrizePoolInfo(
                    pool_type=pool_type.value,
                    base_amount=base,
                    bonus_amount=bonus,
                    total_amount=base + bonus,
                    currency=settings.prize_currency,
                    last_updated=now,
                )
            )
        return pools
