"""
Prize settlement services.
"""

from .prize_pool_service import PrizePoolManager, calculate_revenue_split
from .leaderboard_service import LeaderboardService
from .identity_service import FarcasterIdentityResolver
from .payout_service import SolanaPayoutExecutor
from .distribution_repository import DistributionRepository
from .settlement_service import PrizeDistributionService, PRIZE_DISTRIBUTION_PERCENTAGES
from .container import ServiceContainer

__all__ = [
    "PrizePoolManager",
    "calculate_revenue_split",
    "LeaderboardService",
    "FarcasterIdentityResolver",
    "SolanaPayoutExecutor",
    "DistributionRepository",
    "PrizeDistributionService",
    "PRIZE_DISTRIBUTION_PERCENTAGES",
    "ServiceContainer",
]
