"""
Prize distribution audit models.

One `DistributionSummary` row per settlement attempt, written as PENDING before
any monetary side effect and moved to exactly one terminal state. Payout rows
(`PrizeDistributionLog`) exist only for payouts handed to the payout executor;
winners skipped before that point are recorded in `SkippedPayoutLog`.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, Numeric, Text, Index, ForeignKey, DateTime,
    Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, TimestampMixin, utcnow


class DistributionStatus(str, Enum):
    """Settlement attempt status."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self != DistributionStatus.PENDING


class PayoutStatus(str, Enum):
    """Outcome of a single attempted payout."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SkipReason(str, Enum):
    """Why a winner got no payout attempt."""
    UNRESOLVED_ADDRESS = "UNRESOLVED_ADDRESS"
    ALREADY_PAID = "ALREADY_PAID"


def new_summary_id() -> str:
    return str(uuid.uuid4())


class DistributionSummary(BaseModel, TimestampMixin):
    """One settlement attempt for a (pool type, period)."""

    __tablename__ = "distribution_summary_log"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_summary_id
    )

    period_identifier: Mapped[str] = mapped_column(
        String(16),
        comment="YYYY-MM-DD for daily, YYYY-Www for weekly"
    )

    pool_type: Mapped[str] = mapped_column(
        String(10),
        comment="daily or weekly"
    )

    status: Mapped[DistributionStatus] = mapped_column(
        SQLEnum(DistributionStatus, native_enum=False, length=16),
        default=DistributionStatus.PENDING
    )

    total_prize_pool_claimed: Mapped[Decimal] = mapped_column(
        Numeric(30, 9),
        default=Decimal("0"),
        comment="Budget of this attempt in display units"
    )

    total_distributed_amount: Mapped[Decimal] = mapped_column(
        Numeric(30, 9),
        default=Decimal("0"),
        comment="Sum of successful payouts in display units"
    )

    number_of_winners: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Number of successful payouts"
    )

    pool_claimed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Whether this attempt took the pool from the ledger"
    )

    retry_of_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="Failed attempt this one retries"
    )

    currency: Mapped[str] = mapped_column(String(16), default="GLICO")

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    payouts: Mapped[List["PrizeDistributionLog"]] = relationship(
        "PrizeDistributionLog",
        back_populates="summary",
        order_by="PrizeDistributionLog.rank"
    )

    __table_args__ = (
        Index("idx_distribution_period", "pool_type", "period_identifier"),
        Index("idx_distribution_status", "status"),
        Index("idx_distribution_started", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DistributionSummary(id={self.id}, pool={self.pool_type}, "
            f"period={self.period_identifier}, status={self.status})>"
        )


class PrizeDistributionLog(BaseModel, TimestampMixin):
    """One payout handed to the payout executor."""

    __tablename__ = "prize_distribution_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    distribution_summary_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("distribution_summary_log.id"),
        index=True
    )

    user_id: Mapped[str] = mapped_column(String(64), comment="Farcaster FID")

    wallet_address: Mapped[str] = mapped_column(String(64))

    rank: Mapped[int] = mapped_column(Integer)

    score: Mapped[float] = mapped_column(Numeric(20, 4, asdecimal=False))

    prize_amount: Mapped[Decimal] = mapped_column(
        Numeric(30, 9),
        comment="Prize in display units"
    )

    prize_amount_units: Mapped[str] = mapped_column(
        String(80),
        comment="Prize in the token's smallest unit, exact integer as text"
    )

    transaction_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    status: Mapped[PayoutStatus] = mapped_column(
        SQLEnum(PayoutStatus, native_enum=False, length=16)
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    distributed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    summary: Mapped["DistributionSummary"] = relationship(
        "DistributionSummary",
        back_populates="payouts"
    )

    __table_args__ = (
        Index("idx_payout_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<PrizeDistributionLog(user={self.user_id}, rank={self.rank}, status={self.status})>"


class SkippedPayoutLog(BaseModel, TimestampMixin):
    """A winner that earned a prize but was never sent to the payout executor."""

    __tablename__ = "skipped_payout_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    distribution_summary_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("distribution_summary_log.id"),
        index=True
    )

    user_id: Mapped[str] = mapped_column(String(64))

    rank: Mapped[int] = mapped_column(Integer)

    score: Mapped[float] = mapped_column(Numeric(20, 4, asdecimal=False))

    prize_amount: Mapped[Decimal] = mapped_column(Numeric(30, 9))

    reason: Mapped[SkipReason] = mapped_column(
        SQLEnum(SkipReason, native_enum=False, length=32)
    )

    def __repr__(self) -> str:
        return f"<SkippedPayoutLog(user={self.user_id}, rank={self.rank}, reason={self.reason})>"
