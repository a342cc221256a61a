"""
Shared fixtures: an in-memory Redis stand-in, a sqlite database and fake
payout/identity collaborators.
"""

from typing import Dict, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from kissmint.cache.cache_keys import KeyBuilder
from kissmint.cache.redis_client import RedisClient
from kissmint.core.database import (
    DatabaseManager, close_database, get_async_session, init_database
)
from kissmint.core.periods import PoolType
from kissmint.models.distribution import PayoutStatus
from kissmint.services.distribution_repository import DistributionRepository
from kissmint.services.leaderboard_service import LeaderboardService
from kissmint.services.prize_pool_service import PrizePoolManager
from kissmint.services.settlement_service import PrizeDistributionService
from kissmint.services.types import PayoutRequest, PayoutResult


class FakePipeline:
    """Queues commands and applies them on execute, like a MULTI/EXEC block."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    def zadd(self, key, mapping):
        self.commands.append(("zadd", key, mapping))
        return self

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))
        return self

    async def execute(self):
        self.redis._check("execute")
        results = []
        for name, *args in self.commands:
            results.append(await getattr(self.redis, name)(*args))
        self.commands = []
        return results

    async def reset(self):
        self.commands = []


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the services."""

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_on = set()
        self.closed = False

    def _check(self, command: str) -> None:
        if command in self.fail_on:
            raise RedisConnectionError(f"{command} failed")

    async def ping(self):
        self._check("ping")
        return True

    async def aclose(self):
        self.closed = True

    async def get(self, key):
        self._check("get")
        return self.strings.get(key)

    async def set(self, key, value, ex=None, nx=False, get=False):
        self._check("set")
        previous = self.strings.get(key)
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        if get:
            return previous
        return True

    async def incrbyfloat(self, key, amount):
        self._check("incrbyfloat")
        value = float(self.strings.get(key, 0)) + float(amount)
        self.strings[key] = repr(value)
        return value

    async def delete(self, *keys):
        self._check("delete")
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None:
                removed += 1
            if self.zsets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def zadd(self, key, mapping):
        self._check("zadd")
        board = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in board)
        board.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zrange(self, key, start, end, desc=False, withscores=False):
        self._check("zrange")
        board = self.zsets.get(key, {})
        # Redis orders by score, then member; desc reverses both
        ordered = sorted(board.items(), key=lambda item: (item[1], item[0]), reverse=desc)
        stop = None if end == -1 else end + 1
        window = ordered[start:stop]
        if withscores:
            return [(member, score) for member, score in window]
        return [member for member, _ in window]

    async def expire(self, key, seconds):
        self._check("expire")
        self.ttls[key] = seconds
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakeIdentityResolver:
    """FID -> address lookup from a dict; unknown FIDs resolve to None."""

    def __init__(self, addresses: Optional[Dict[str, str]] = None):
        self.addresses = dict(addresses or {})
        self.calls: List[str] = []

    async def resolve_wallet_address(self, user_id: str) -> Optional[str]:
        self.calls.append(user_id)
        return self.addresses.get(user_id)

    async def close(self) -> None:
        pass


class FakePayoutExecutor:
    """Records every batch; fails listed wallets or raises when told to."""

    def __init__(self, decimals: int = 9):
        self.decimals = decimals
        self.batches: List[List[PayoutRequest]] = []
        self.failing_wallets = set()
        self.raise_error: Optional[Exception] = None

    def is_configured(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    async def distribute_payouts(self, payouts: List[PayoutRequest]) -> List[PayoutResult]:
        self.batches.append(list(payouts))
        if self.raise_error is not None:
            raise self.raise_error
        results = []
        for index, payout in enumerate(payouts):
            if payout.wallet_address in self.failing_wallets:
                results.append(PayoutResult(
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    status=PayoutStatus.FAILED,
                    error="transfer rejected",
                ))
            else:
                results.append(PayoutResult(
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    status=PayoutStatus.SUCCESS,
                    transaction_reference=f"sig-{len(self.batches)}-{index}",
                ))
        return results


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis):
    return RedisClient(url="redis://test", client=fake_redis)


@pytest.fixture
def keys():
    return KeyBuilder()


@pytest.fixture
async def db():
    """Fresh in-memory sqlite database per test."""
    await init_database("sqlite:///:memory:")
    await DatabaseManager.create_tables()
    yield get_async_session
    await close_database()


@pytest.fixture
def pool_manager(redis_client, db, keys):
    return PrizePoolManager(redis_client, db, keys)


@pytest.fixture
def leaderboard_service(redis_client, db, keys):
    return LeaderboardService(redis_client, db, keys)


@pytest.fixture
def repository(db):
    return DistributionRepository(db)


@pytest.fixture
def resolver():
    return FakeIdentityResolver({
        "101": "Wallet1111111111111111111111111111111111111",
        "102": "Wallet2222222222222222222222222222222222222",
        "103": "Wallet3333333333333333333333333333333333333",
        "104": "Wallet4444444444444444444444444444444444444",
        "105": "Wallet5555555555555555555555555555555555555",
    })


@pytest.fixture
def executor():
    return FakePayoutExecutor()


@pytest.fixture
def distribution_service(leaderboard_service, pool_manager, executor, resolver, repository, redis_client, keys):
    return PrizeDistributionService(
        leaderboard_service=leaderboard_service,
        prize_pool_manager=pool_manager,
        payout_executor=executor,
        identity_resolver=resolver,
        distribution_repository=repository,
        redis_client=redis_client,
        key_builder=keys,
    )


@pytest.fixture
def seed_board(fake_redis, keys):
    """Write scores straight into a period's live board."""
    async def seed(pool_type: PoolType, period: str, scores: Dict[str, float]) -> str:
        key = keys.leaderboard_key(pool_type, period)
        await fake_redis.zadd(key, scores)
        return key
    return seed
