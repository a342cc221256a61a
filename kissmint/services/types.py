"""
Value types passed between the settlement services.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from kissmint.models.distribution import PayoutStatus


@dataclass
class LeaderboardEntry:
    """Ranked leaderboard entry; rank is 1-based by position."""
    user_id: str
    score: float
    rank: int


@dataclass
class ArchivedLeaderboardEntry:
    """Final standing with the prize it earned."""
    user_id: str
    score: float
    rank: int
    prize_amount: Decimal = Decimal("0")


@dataclass
class RevenueSplit:
    """How one purchase's revenue is divided."""
    total_revenue: Decimal
    daily_contribution: Decimal
    weekly_contribution: Decimal
    treasury_share: Decimal


@dataclass
class PrizePoolInfo:
    """Displayed prize pool: fixed base plus the accumulated bonus."""
    pool_type: str
    base_amount: float
    bonus_amount: float
    total_amount: float
    currency: str
    last_updated: datetime


@dataclass
class PayoutRequest:
    """Transfer of `amount` smallest units to `wallet_address`."""
    wallet_address: str
    amount: int


@dataclass
class PayoutResult:
    """Outcome of one PayoutRequest."""
    wallet_address: str
    amount: int
    status: PayoutStatus
    transaction_reference: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PayoutStatus.SUCCESS


@dataclass
class PlannedPayout:
    """A winner whose prize was computed and whose address resolved."""
    user_id: str
    wallet_address: str
    rank: int
    score: float
    prize_amount: Decimal
    prize_amount_units: int

    def to_request(self) -> PayoutRequest:
        return PayoutRequest(wallet_address=self.wallet_address, amount=self.prize_amount_units)


@dataclass
class SkippedPayout:
    """A winner with a prize that was never sent to the executor."""
    user_id: str
    rank: int
    score: float
    prize_amount: Decimal
    reason: str


@dataclass
class SettlementPlan:
    """Everything computed before money moves."""
    claimed_pool: Decimal
    payouts: List[PlannedPayout] = field(default_factory=list)
    skipped: List[SkippedPayout] = field(default_factory=list)
    archive_entries: List[ArchivedLeaderboardEntry] = field(default_factory=list)

    @property
    def total_planned(self) -> Decimal:
        return sum((p.prize_amount for p in self.payouts), Decimal("0"))
