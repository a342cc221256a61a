"""
Durable leaderboard records: archived final standings and the score
submission audit trail.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    String, Integer, Boolean, Numeric, Text, Index, DateTime, JSON
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, utcnow


class LeaderboardArchive(BaseModel, TimestampMixin):
    """Final ranked entry of a closed leaderboard period."""

    __tablename__ = "leaderboard_archives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    period_identifier: Mapped[str] = mapped_column(String(16))

    board_type: Mapped[str] = mapped_column(String(10))

    user_id: Mapped[str] = mapped_column(String(64))

    rank: Mapped[int] = mapped_column(Integer)

    score: Mapped[float] = mapped_column(Numeric(20, 4, asdecimal=False))

    prize_amount: Mapped[Decimal] = mapped_column(Numeric(30, 9), default=Decimal("0"))

    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_archive_period", "board_type", "period_identifier"),
    )

    def __repr__(self) -> str:
        return f"<LeaderboardArchive({self.board_type} {self.period_identifier} #{self.rank} {self.user_id})>"


class ScoreSubmissionLog(BaseModel, TimestampMixin):
    """Every score submission, accepted or rejected."""

    __tablename__ = "score_submission_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(String(64), index=True)

    score: Mapped[Optional[float]] = mapped_column(Numeric(20, 4, asdecimal=False), nullable=True)

    game_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    game_session_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    is_valid: Mapped[bool] = mapped_column(Boolean)

    validation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<ScoreSubmissionLog(user={self.user_id}, score={self.score}, valid={self.is_valid})>"
