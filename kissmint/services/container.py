"""
Process-wide service wiring.

`ServiceContainer` owns every external client (database engine, Redis,
Neynar HTTP session, Solana RPC client) and hands them to the services
through their constructors. The API lifespan and the scheduler process each
build one container and close it on shutdown.
"""

from typing import Any, Dict, Optional

import structlog

from kissmint.cache.redis_client import RedisClient
from kissmint.cache.cache_keys import KeyBuilder, get_key_builder
from kissmint.core import database
from kissmint.core.database import DatabaseManager, SessionFactory, get_async_session
from .distribution_repository import DistributionRepository
from .identity_service import FarcasterIdentityResolver
from .leaderboard_service import LeaderboardService
from .payout_service import SolanaPayoutExecutor
from .prize_pool_service import PrizePoolManager
from .settlement_service import PrizeDistributionService

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Builds, owns and tears down the settlement services."""

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        session_factory: SessionFactory = get_async_session,
        identity_resolver: Optional[FarcasterIdentityResolver] = None,
        payout_executor: Optional[SolanaPayoutExecutor] = None,
        key_builder: Optional[KeyBuilder] = None,
        database_url: Optional[str] = None,
        create_tables: bool = False
    ):
        self.redis = redis_client or RedisClient()
        self.session_factory = session_factory
        self.keys = key_builder or get_key_builder()
        self.database_url = database_url
        self.create_tables = create_tables

        self.identity_resolver = identity_resolver or FarcasterIdentityResolver()
        self.payout_executor = payout_executor or SolanaPayoutExecutor()

        self.prize_pool_manager = PrizePoolManager(self.redis, session_factory, self.keys)
        self.leaderboard_service = LeaderboardService(self.redis, session_factory, self.keys)
        self.distribution_repository = DistributionRepository(session_factory)
        self.distribution_service = PrizeDistributionService(
            leaderboard_service=self.leaderboard_service,
            prize_pool_manager=self.prize_pool_manager,
            payout_executor=self.payout_executor,
            identity_resolver=self.identity_resolver,
            distribution_repository=self.distribution_repository,
            redis_client=self.redis,
            key_builder=self.keys,
        )

        self._initialized = False

    async def initialize(self) -> None:
        """Open connections. Safe to call more than once."""
        if self._initialized:
            return

        logger.info("Initializing services")
        await database.init_database(self.database_url)
        if self.create_tables:
            await DatabaseManager.create_tables()
        await self.redis.connect()

        if not self.payout_executor.is_configured():
            logger.warning("Payout wallet not configured, payouts will fail")

        self._initialized = True
        logger.info("Services initialized")

    async def close(self) -> None:
        """Release every owned client, continuing past individual failures."""
        logger.info("Closing services")
        for name, closer in (
            ("identity_resolver", self.identity_resolver.close),
            ("payout_executor", self.payout_executor.close),
            ("redis", self.redis.disconnect),
            ("database", database.close_database),
        ):
            try:
                await closer()
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))
        self._initialized = False
        logger.info("Services closed")

    async def health_check(self) -> Dict[str, Any]:
        db_healthy = await DatabaseManager.health_check()
        redis_health = await self.redis.health_check()
        healthy = db_healthy and redis_health.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "unhealthy",
            "services": {
                "database": "healthy" if db_healthy else "unhealthy",
                "redis": redis_health.get("status", "unknown"),
                "payouts": "configured" if self.payout_executor.is_configured() else "not_configured",
            },
        }
