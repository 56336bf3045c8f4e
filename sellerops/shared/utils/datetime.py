"""
UTC datetime utilities for consistent timezone handling.

All datetime values in the system are timezone-aware UTC. SQLite hands
back naive datetimes, so repositories normalize with ensure_utc.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Ensure a datetime is UTC-aware.

    - If None, returns None
    - If naive, assumes UTC and attaches timezone
    - If aware, converts to UTC

    Use at repository/persistence boundaries to normalize datetimes.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def start_of_utc_day(dt: datetime) -> datetime:
    """Return midnight UTC of the day containing dt."""
    aware = ensure_utc(dt)
    assert aware is not None
    return aware.replace(hour=0, minute=0, second=0, microsecond=0)