"""
Redis access layer for live leaderboards, prize pools and settlement locks.
"""

from .redis_client import RedisClient
from .cache_keys import KeyBuilder, get_key_builder

__all__ = [
    "RedisClient",
    "KeyBuilder",
    "get_key_builder",
]
