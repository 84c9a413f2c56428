"""
Datetime helpers for timezone-aware review scheduling and session timestamps.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC.

    All engine timestamps go through this function so tests can patch a single
    place to freeze time.

    Returns:
        A timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware.

    Naive datetimes (for example, loaded back from a store that drops the
    offset) are interpreted as UTC. Aware datetimes are returned unchanged.

    Args:
        dt: The datetime to normalize

    Returns:
        A timezone-aware datetime

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def add_days(dt: datetime, days: int) -> datetime:
    """Return ``dt`` shifted forward by a whole number of days."""
    return ensure_timezone_aware(dt) + timedelta(days=days)


def days_between(start: datetime, end: datetime) -> float:
    """Return the (possibly fractional, possibly negative) days from start to end."""
    delta = ensure_timezone_aware(end) - ensure_timezone_aware(start)
    return delta.total_seconds() / 86400.0
