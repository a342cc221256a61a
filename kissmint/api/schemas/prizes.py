"""
Prize, revenue and leaderboard API schemas.

Request bodies accept the mini-app's camelCase names as well as snake_case.
Field types stay loose where the services do their own validation so every
rejection carries the same error shape.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from kissmint.models.distribution import DistributionStatus, PayoutStatus, SkipReason


class DistributionCreateRequest(BaseModel):
    """Start a settlement for an explicit period."""
    model_config = ConfigDict(populate_by_name=True)

    pool_type: Optional[str] = Field(None, alias="poolType", description="daily or weekly")
    period_identifier: Optional[str] = Field(
        None,
        alias="periodIdentifier",
        description="YYYY-MM-DD for daily, YYYY-Www for weekly"
    )


class DistributionAccepted(BaseModel):
    """Acknowledgement that a settlement was started in the background."""
    pool_type: str
    period_identifier: str
    retry_of_id: Optional[str] = None


class DistributionSummarySchema(BaseModel):
    """One settlement attempt."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    pool_type: str
    period_identifier: str
    status: DistributionStatus
    total_prize_pool_claimed: Decimal
    total_distributed_amount: Decimal
    number_of_winners: int
    pool_claimed: bool
    retry_of_id: Optional[str] = None
    currency: str
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class PayoutSchema(BaseModel):
    """One attempted payout."""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    wallet_address: str
    rank: int
    score: float
    prize_amount: Decimal
    prize_amount_units: str
    status: PayoutStatus
    transaction_reference: Optional[str] = None
    error_message: Optional[str] = None
    distributed_at: Optional[datetime] = None


class SkippedPayoutSchema(BaseModel):
    """A winner that was not paid, with the reason."""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    rank: int
    score: float
    prize_amount: Decimal
    reason: SkipReason


class DistributionDetail(DistributionSummarySchema):
    """Summary with its payout and skip rows."""
    payouts: List[PayoutSchema] = Field(default_factory=list)
    skipped: List[SkippedPayoutSchema] = Field(default_factory=list)


class PrizePoolSchema(BaseModel):
    """Displayed pool: base prize plus accumulated bonus."""
    model_config = ConfigDict(from_attributes=True)

    pool_type: str
    base_amount: float
    bonus_amount: float
    total_amount: float
    currency: str
    last_updated: datetime


class RevenueAllocationRequest(BaseModel):
    """A completed purchase whose revenue feeds the prize pools."""
    model_config = ConfigDict(populate_by_name=True)

    purchase_id: Optional[Any] = Field(None, alias="purchaseId")
    total_revenue: Optional[Any] = Field(None, alias="totalRevenue")


class RevenueSplitSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_revenue: Decimal
    daily_contribution: Decimal
    weekly_contribution: Decimal
    treasury_share: Decimal


class ScoreSubmissionRequest(BaseModel):
    """A finished game's score."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[Any] = Field(None, alias="userId", description="Farcaster FID")
    score: Optional[Any] = None
    game_id: Optional[str] = Field(None, alias="gameId")
    game_session_data: Optional[Dict[str, Any]] = Field(None, alias="gameSessionData")


class LeaderboardEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    score: float
    rank: int
