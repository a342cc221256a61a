"""
Revenue allocation audit log: how each game pass purchase was split.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Integer, Numeric, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, utcnow


class RevenueAllocationLog(BaseModel, TimestampMixin):
    """Append-only record of one purchase's revenue split."""

    __tablename__ = "revenue_allocation_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    purchase_id: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        index=True,
        comment="External purchase identifier"
    )

    total_revenue: Mapped[Decimal] = mapped_column(Numeric(20, 2))

    daily_contribution: Mapped[Decimal] = mapped_column(Numeric(20, 2))

    weekly_contribution: Mapped[Decimal] = mapped_column(Numeric(20, 2))

    treasury_share: Mapped[Decimal] = mapped_column(
        Numeric(20, 2),
        comment="Not added to any pool; external accounting bucket"
    )

    allocated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<RevenueAllocationLog(purchase={self.purchase_id}, total={self.total_revenue})>"
