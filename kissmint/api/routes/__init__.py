"""API routes package."""

from . import prizes, cron, revenue, leaderboard

__all__ = ["prizes", "cron", "revenue", "leaderboard"]
