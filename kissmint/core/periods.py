"""
Settlement period identifiers.

Daily periods are UTC calendar dates (``2025-06-08``); weekly periods are ISO
weeks keyed by ISO week-year (``2025-W23``). Every module that names a period
goes through these functions so score submission, settlement and archiving
always agree on the key.
"""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from .exceptions import ValidationError


class PoolType(str, Enum):
    """Prize pool / leaderboard window."""
    DAILY = "daily"
    WEEKLY = "weekly"


DAILY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")
WEEKLY_PATTERN = re.compile(r"^\d{4}-W(0[1-9]|[1-4]\d|5[0-3])$")


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def daily_period_identifier(now: Optional[datetime] = None) -> str:
    """UTC calendar date as YYYY-MM-DD."""
    return _utc(now).strftime("%Y-%m-%d")


def weekly_period_identifier(now: Optional[datetime] = None) -> str:
    """ISO week as YYYY-Www, year being the ISO week-year."""
    iso_year, iso_week, _ = _utc(now).isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def period_identifier(pool_type: PoolType, now: Optional[datetime] = None) -> str:
    if PoolType(pool_type) == PoolType.DAILY:
        return daily_period_identifier(now)
    return weekly_period_identifier(now)


def current_period_identifiers(now: Optional[datetime] = None) -> Dict[str, str]:
    """Identifiers of the periods a score submitted at `now` counts towards."""
    return {
        PoolType.DAILY.value: daily_period_identifier(now),
        PoolType.WEEKLY.value: weekly_period_identifier(now),
    }


def daily_settlement_period(now: Optional[datetime] = None) -> str:
    """Daily settlement always closes yesterday."""
    return daily_period_identifier(_utc(now) - timedelta(days=1))


def weekly_settlement_period(now: Optional[datetime] = None) -> str:
    """Weekly settlement closes the ISO week containing the day 7 days ago."""
    return weekly_period_identifier(_utc(now) - timedelta(days=7))


def settlement_period(pool_type: PoolType, now: Optional[datetime] = None) -> str:
    if PoolType(pool_type) == PoolType.DAILY:
        return daily_settlement_period(now)
    return weekly_settlement_period(now)


def validate_pool_type(pool_type: str) -> PoolType:
    try:
        return PoolType(pool_type)
    except ValueError:
        raise ValidationError(
            'Invalid pool type. Must be "daily" or "weekly"',
            {"pool_type": pool_type}
        )


def validate_period_identifier(pool_type: PoolType, identifier: Optional[str]) -> str:
    """Check that `identifier` is well formed for the given pool type."""
    pool_type = validate_pool_type(pool_type)
    pattern = DAILY_PATTERN if pool_type == PoolType.DAILY else WEEKLY_PATTERN

    if not identifier or not pattern.match(identifier):
        raise ValidationError(
            f"Invalid {pool_type.value} period identifier",
            {"pool_type": pool_type.value, "period_identifier": identifier}
        )

    if pool_type == PoolType.DAILY:
        try:
            datetime.strptime(identifier, "%Y-%m-%d")
        except ValueError:
            raise ValidationError(
                "Invalid daily period identifier",
                {"pool_type": pool_type.value, "period_identifier": identifier}
            )
    return identifier
