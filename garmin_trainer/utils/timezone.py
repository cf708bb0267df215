"""UTC helpers.

SQLite drops tzinfo on round-trip, so every datetime read from the database
goes through to_utc before being compared with utcnow().
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC.

    Args:
        dt: Datetime (timezone-aware or naive)

    Returns:
        Datetime in UTC timezone
    """
    if dt.tzinfo is None:
        # Assume UTC if naive
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def month_start(now: datetime) -> datetime:
    """First instant of the month containing `now` (UTC)."""
    now = to_utc(now)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
