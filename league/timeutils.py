"""Timezone-aware time utilities for the league."""

import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .config import TIMEZONE


def get_timezone():
    """Get the timezone object for the league."""
    return ZoneInfo(TIMEZONE)


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(get_timezone())


def hours(count: float) -> datetime.timedelta:
    return datetime.timedelta(hours=count)


def to_timestamp(moment: Optional[datetime.datetime]) -> Optional[float]:
    """Convert a datetime to the store's epoch-seconds timestamp."""
    if moment is None:
        return None
    return moment.timestamp()


def from_timestamp(timestamp: Optional[float]) -> Optional[datetime.datetime]:
    """Convert a stored epoch-seconds timestamp back to a datetime."""
    if timestamp is None:
        return None
    return datetime.datetime.fromtimestamp(timestamp, get_timezone())


def hours_until(moment: datetime.datetime, at: Optional[datetime.datetime] = None) -> float:
    """Get hours until the given moment, never negative."""
    delta = moment - (at or now())
    return max(0.0, delta.total_seconds() / 3600)


def hours_since(moment: datetime.datetime, at: Optional[datetime.datetime] = None) -> float:
    """Get hours since the given moment."""
    delta = (at or now()) - moment
    return delta.total_seconds() / 3600


def format_remaining(delta: datetime.timedelta) -> str:
    """Render a remaining duration as '5h 3m' or '42m'."""
    seconds = max(0, int(delta.total_seconds()))
    whole_hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if whole_hours > 0:
        return f"{whole_hours}h {minutes}m"
    return f"{minutes}m"
