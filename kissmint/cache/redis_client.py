"""
Redis client configuration and connection management.

Cache-style helpers (get/set/delete) log and degrade like a cache should.
Ledger and leaderboard helpers log and re-raise: a prize pool increment or a
score write that silently returned a default would lose money or scores.
"""

import asyncio
from typing import Optional, Any, Dict, List, Tuple, Union, Mapping
import redis.asyncio as redis
from redis.asyncio import Redis
from contextlib import asynccontextmanager

from kissmint.core.config import settings

import structlog

logger = structlog.get_logger(__name__)


class RedisClient:
    """Async Redis client wrapper with connection management."""

    def __init__(self, url: Optional[str] = None, client: Optional[Redis] = None):
        self.url = url or settings.redis_url
        self._client: Optional[Redis] = client
        self._pool: Optional[redis.ConnectionPool] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        try:
            if self._client is None:
                self._pool = redis.ConnectionPool.from_url(
                    self.url,
                    decode_responses=True,
                    max_connections=20,
                    retry_on_timeout=True,
                    socket_keepalive=True,
                )
                self._client = Redis(connection_pool=self._pool)

                await self._client.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        try:
            if self._client:
                await self._client.aclose()
                self._client = None
                logger.info("Redis connection closed")
        except Exception as e:
            logger.error("Error closing Redis connection", error=str(e))

    @property
    def client(self) -> Redis:
        """Get Redis client instance."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis connection health."""
        try:
            if self._client is None:
                return {"status": "disconnected", "error": "No connection"}

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            result = await self._client.ping()
            ping_time = (loop.time() - start_time) * 1000

            return {
                "status": "healthy" if result else "unhealthy",
                "ping_ms": round(ping_time, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}

    # Cache-style operations
    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        try:
            return await self.client.get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key, error=str(e))
            return None

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
        nx: bool = False
    ) -> bool:
        """Set key-value with optional expiration."""
        try:
            return bool(await self.client.set(key, value, ex=ex, nx=nx))
        except Exception as e:
            logger.error("Redis SET failed", key=key, error=str(e))
            return False

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys."""
        try:
            return await self.client.delete(*keys)
        except Exception as e:
            logger.error("Redis DELETE failed", keys=keys, error=str(e))
            return 0

    # Ledger operations
    async def read(self, key: str) -> Optional[str]:
        """GET that raises instead of degrading to None."""
        try:
            return await self.client.get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key, error=str(e))
            raise

    async def incrbyfloat(self, key: str, amount: float) -> float:
        """Atomically add `amount` to a numeric key."""
        try:
            return float(await self.client.incrbyfloat(key, amount))
        except Exception as e:
            logger.error("Redis INCRBYFLOAT failed", key=key, error=str(e))
            raise

    async def getset_zero(self, key: str) -> Optional[str]:
        """Atomically reset a numeric key to 0, returning its previous value."""
        try:
            # SET ... GET is a single command, so no write can land between read and reset
            return await self.client.set(key, 0, get=True)
        except Exception as e:
            logger.error("Redis SET GET failed", key=key, error=str(e))
            raise

    # Lock operations
    async def acquire_lock(self, key: str, token: str, ttl: int) -> bool:
        """SET NX EX; True only if this caller now holds the lock."""
        try:
            return bool(await self.client.set(key, token, ex=ttl, nx=True))
        except Exception as e:
            logger.error("Redis lock acquire failed", key=key, error=str(e))
            raise

    async def release_lock(self, key: str, token: str) -> bool:
        """Delete the lock if it is still held with `token`."""
        try:
            # An expired lock may already belong to someone else
            if await self.client.get(key) != token:
                return False
            return bool(await self.client.delete(key))
        except Exception as e:
            logger.error("Redis lock release failed", key=key, error=str(e))
            raise

    # Sorted set operations
    async def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        """Add or overwrite members of a sorted set."""
        try:
            return await self.client.zadd(key, dict(mapping))
        except Exception as e:
            logger.error("Redis ZADD failed", key=key, error=str(e))
            raise

    async def zrevrange_withscores(self, key: str, start: int, end: int) -> List[Tuple[str, float]]:
        """Members from highest to lowest score with their scores."""
        try:
            return await self.client.zrange(key, start, end, desc=True, withscores=True)
        except Exception as e:
            logger.error("Redis ZRANGE failed", key=key, error=str(e))
            raise

    # Pipeline operations
    @asynccontextmanager
    async def pipeline(self, transaction: bool = True):
        """Create Redis pipeline for batch operations."""
        pipe = self.client.pipeline(transaction=transaction)
        try:
            yield pipe
            await pipe.execute()
        except Exception as e:
            logger.error("Redis pipeline failed", error=str(e))
            raise
        finally:
            await pipe.reset()
