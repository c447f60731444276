"""
Datetime utilities for Rhizome services.
"""
from datetime import datetime, timezone
from typing import Optional


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp stored in SQLite into an aware datetime."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value))


def days_since(then: datetime, now: datetime) -> int:
    """
    Whole days elapsed between two instants, never negative.

    Future timestamps (e.g. a scheduled meeting recorded early) are capped
    at now.
    """
    then = make_aware(then)
    now = make_aware(now)
    if then > now:
        return 0
    return int((now - then).total_seconds() // 86400)
