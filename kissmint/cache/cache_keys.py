"""
Redis key building for live leaderboards, prize pools and settlement locks.
"""

from typing import Any

from kissmint.core.config import settings
from kissmint.core.periods import PoolType


class KeyBuilder:
    """Utility for building consistent Redis keys."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.separator = ":"

    def build(self, *parts: Any) -> str:
        """Build key from parts, skipping empty ones."""
        normalized_parts = [self.prefix] if self.prefix else []
        for part in parts:
            if part is None:
                continue
            if isinstance(part, PoolType):
                part = part.value
            normalized_parts.append(str(part))
        return self.separator.join(normalized_parts)

    def prize_pool_key(self, pool_type: PoolType) -> str:
        """prize_pool:daily / prize_pool:weekly"""
        return self.build("prize_pool", PoolType(pool_type))

    def leaderboard_key(self, pool_type: PoolType, period_identifier: str) -> str:
        """leaderboard:daily:2025-06-08 / leaderboard:weekly:2025-W23"""
        return self.build("leaderboard", PoolType(pool_type), period_identifier)

    def settlement_lock_key(self, pool_type: PoolType, period_identifier: str) -> str:
        return self.build("settlement_lock", PoolType(pool_type), period_identifier)


def get_key_builder() -> KeyBuilder:
    """Key builder using the configured prefix."""
    return KeyBuilder(prefix=settings.redis_prefix)
