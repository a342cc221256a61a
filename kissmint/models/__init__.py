"""
Database models for the Kissmint backend.

Durable audit trail of prize settlement, revenue allocation and
leaderboard history. Live leaderboards and pools stay in Redis.
"""

from .base import Base, BaseModel, TimestampMixin
from .distribution import (
    DistributionSummary, PrizeDistributionLog, SkippedPayoutLog,
    DistributionStatus, PayoutStatus, SkipReason
)
from .revenue import RevenueAllocationLog
from .leaderboard import LeaderboardArchive, ScoreSubmissionLog

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "DistributionSummary",
    "PrizeDistributionLog",
    "SkippedPayoutLog",
    "DistributionStatus",
    "PayoutStatus",
    "SkipReason",
    "RevenueAllocationLog",
    "LeaderboardArchive",
    "ScoreSubmissionLog",
]
