"""
Declarative base and shared mixins for all models.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base holding the shared metadata."""


class BaseModel(Base):
    """Abstract base for all tables."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__mapper__.column_attrs
        }


class TimestampMixin:
    """Row creation and last-update timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        comment="Row creation time"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        comment="Row last update time"
    )
