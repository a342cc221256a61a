"""
Test the prize pool ledger and revenue allocation.
"""

from contextlib import asynccontextmanager
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from kissmint.core.exceptions import (
    DatabaseError, DuplicatePurchaseError, LedgerError, ValidationError
)
from kissmint.core.periods import PoolType
from kissmint.models.revenue import RevenueAllocationLog
from kissmint.services.prize_pool_service import PrizePoolManager, calculate_revenue_split


@pytest.mark.parametrize("total", [
    "0.01", "0.99", "1", "9.99", "10", "33.33", "99.95", "123.45", "1000", "98765.43",
])
def test_revenue_split_sums_to_total(total):
    split = calculate_revenue_split(Decimal(total))
    assert split.daily_contribution + split.weekly_contribution + split.treasury_share == Decimal(total)


def test_revenue_split_rounds_pool_shares_half_up():
    split = calculate_revenue_split(Decimal("9.99"))
    assert split.daily_contribution == Decimal("0.90")
    assert split.weekly_contribution == Decimal("2.10")
    assert split.treasury_share == Decimal("6.99")


def test_revenue_split_of_round_amount():
    split = calculate_revenue_split(100)
    assert split.daily_contribution == Decimal("9.00")
    assert split.weekly_contribution == Decimal("21.00")
    assert split.treasury_share == Decimal("70.00")


@pytest.mark.asyncio
async def test_pool_starts_empty(pool_manager):
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 0.0


@pytest.mark.asyncio
async def test_add_to_pool_accumulates(pool_manager):
    await pool_manager.add_to_pool(PoolType.DAILY, 10.5)
    await pool_manager.add_to_pool(PoolType.DAILY, 4.5)
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 15.0
    assert await pool_manager.get_pool_value(PoolType.WEEKLY) == 0.0


@pytest.mark.asyncio
async def test_add_non_positive_amount_is_ignored(pool_manager):
    assert await pool_manager.add_to_pool(PoolType.DAILY, 0) is None
    assert await pool_manager.add_to_pool(PoolType.DAILY, -5) is None
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 0.0


@pytest.mark.asyncio
async def test_claim_returns_value_and_zeroes_pool(pool_manager):
    await pool_manager.add_to_pool(PoolType.WEEKLY, 3000)
    assert await pool_manager.claim_pool(PoolType.WEEKLY) == 3000.0
    assert await pool_manager.get_pool_value(PoolType.WEEKLY) == 0.0
    assert await pool_manager.claim_pool(PoolType.WEEKLY) == 0.0


@pytest.mark.asyncio
async def test_claim_of_missing_pool_is_zero(pool_manager):
    assert await pool_manager.claim_pool(PoolType.DAILY) == 0.0


@pytest.mark.asyncio
@pytest.mark.parametrize("stored", ["-12.5", "nan", "inf", "garbage"])
async def test_bad_stored_values_clamp_to_zero(pool_manager, fake_redis, keys, stored):
    fake_redis.strings[keys.prize_pool_key(PoolType.DAILY)] = stored
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 0.0
    assert await pool_manager.claim_pool(PoolType.DAILY) == 0.0


@pytest.mark.asyncio
async def test_store_failures_raise_ledger_error(pool_manager, fake_redis):
    fake_redis.fail_on = {"incrbyfloat", "get", "set"}
    with pytest.raises(LedgerError):
        await pool_manager.add_to_pool(PoolType.DAILY, 1)
    with pytest.raises(LedgerError):
        await pool_manager.get_pool_value(PoolType.DAILY)
    with pytest.raises(LedgerError):
        await pool_manager.claim_pool(PoolType.DAILY)


@pytest.mark.asyncio
async def test_allocate_purchase_revenue(pool_manager, db):
    split = await pool_manager.allocate_purchase_revenue("purchase-1", 100)

    assert split.daily_contribution == Decimal("9.00")
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 9.0
    assert await pool_manager.get_pool_value(PoolType.WEEKLY) == 21.0

    async with db() as session:
        rows = (await session.execute(select(RevenueAllocationLog))).scalars().all()
    assert len(rows) == 1
    assert rows[0].purchase_id == "purchase-1"
    assert Decimal(rows[0].treasury_share) == Decimal("70.00")


@pytest.mark.asyncio
async def test_duplicate_purchase_is_refused_before_pools_change(pool_manager):
    await pool_manager.allocate_purchase_revenue("purchase-1", 100)
    with pytest.raises(DuplicatePurchaseError):
        await pool_manager.allocate_purchase_revenue("purchase-1", 100)
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 9.0


@pytest.mark.asyncio
@pytest.mark.parametrize("purchase_id,revenue", [
    ("", 10),
    (None, 10),
    ("p-1", 0),
    ("p-1", -3),
    ("p-1", "ten"),
    ("p-1", None),
    ("p-1", True),
])
async def test_allocate_rejects_invalid_input(pool_manager, purchase_id, revenue):
    with pytest.raises(ValidationError):
        await pool_manager.allocate_purchase_revenue(purchase_id, revenue)
    assert await pool_manager.get_pool_value(PoolType.DAILY) == 0.0


@pytest.mark.asyncio
async def test_audit_failure_keeps_pool_increment(redis_client, keys, db):
    @asynccontextmanager
    async def broken_session():
        raise OperationalError("INSERT", {}, Exception("disk full"))
        yield

    manager = PrizePoolManager(redis_client, broken_session, keys)
    with pytest.raises(DatabaseError):
        await manager.add_game_pass_revenue_to_pools(
            "purchase-9",
            Decimal("10.00"),
            Decimal("0.90"),
            Decimal("2.10"),
            Decimal("7.00"),
        )
    assert await manager.get_pool_value(PoolType.DAILY) == pytest.approx(0.9)
    assert await manager.get_pool_value(PoolType.WEEKLY) == pytest.approx(2.1)


@pytest.mark.asyncio
async def test_current_prize_pools_add_base_and_bonus(pool_manager, monkeypatch):
    from kissmint.core.config import settings

    monkeypatch.setattr(settings, "daily_base_prize", 50)
    monkeypatch.setattr(settings, "weekly_base_prize", 500)
    await pool_manager.add_to_pool(PoolType.DAILY, 12)

    pools = {p.pool_type: p for p in await pool_manager.get_current_prize_pools()}
    assert pools["daily"].base_amount == 50
    assert pools["daily"].bonus_amount == 12
    assert pools["daily"].total_amount == 62
    assert pools["weekly"].total_amount == 500
    assert pools["weekly"].currency == settings.prize_currency


@pytest.mark.asyncio
async def test_allocation_lookup_failure_raises_database_error(redis_client, keys):
    @asynccontextmanager
    async def broken_session():
        raise OperationalError("SELECT", {}, Exception("db down"))
        yield

    manager = PrizePoolManager(redis_client, broken_session, keys)
    with pytest.raises(DatabaseError):
        await manager.is_purchase_allocated("purchase-1")
    with pytest.raises(DatabaseError):
        await manager.allocate_purchase_revenue("purchase-1", 100)
    assert await manager.get_pool_value(PoolType.DAILY) == 0.0
