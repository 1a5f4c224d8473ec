"""
Datetime utility functions.
Provides timezone-aware UTC helpers used by every time-based league rule.
"""

import math
from datetime import datetime, timedelta
from typing import Optional
import pytz

from padel_league.utils.constants import WEEK_CYCLE_DAYS

SECONDS_PER_DAY = 24 * 60 * 60
EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on storage. Everything is written as UTC, so a naive
    value is UTC by construction.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def week_cycle(now: Optional[datetime] = None) -> int:
    """
    Integer bucket of the 7-day epoch window containing `now`.

    Examples:
        >>> week_cycle(datetime(1970, 1, 8, tzinfo=pytz.UTC))
        1
    """
    now = ensure_utc(now or utcnow())
    return (now - EPOCH) // timedelta(days=WEEK_CYCLE_DAYS)


def days_remaining(until: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days (rounded up) left until `until`; 0 when unset or already past."""
    if until is None:
        return 0
    now = ensure_utc(now or utcnow())
    remaining = (ensure_utc(until) - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining / SECONDS_PER_DAY)
