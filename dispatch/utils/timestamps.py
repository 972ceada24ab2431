"""Timestamp utilities for UTC handling.

Every timestamp the engine persists or compares is timezone-aware UTC:
- Getting current UTC time
- Normalizing naive datetimes
- Round-tripping the ISO 8601 strings stored in the database
- Measuring elapsed rate-limit windows
"""

from datetime import datetime, timezone
from typing import Optional

_STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware ones are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None

    Example:
        >>> naive = datetime(2025, 11, 4, 12, 0, 0)
        >>> ensure_utc(naive).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as the ISO 8601 string used for storage.

    Args:
        dt: Datetime to format

    Returns:
        String like ``2025-11-04T12:00:00.000000Z`` or None
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None
    return dt_utc.strftime(_STORAGE_FORMAT)


def parse_iso_datetime(iso_string: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string to a UTC datetime.

    Accepts the storage format as well as ``+00:00`` offsets and bare dates.

    Args:
        iso_string: ISO 8601 formatted datetime string

    Returns:
        Timezone-aware datetime in UTC, or None if the input is empty or invalid
    """
    if not iso_string or not iso_string.strip():
        return None

    value = iso_string.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def elapsed_hours(since: datetime, now: Optional[datetime] = None) -> float:
    """Hours elapsed between ``since`` and ``now`` (defaults to current time)."""
    now = ensure_utc(now) or utc_now()
    return (now - ensure_utc(since)).total_seconds() / 3600


def elapsed_days(since: datetime, now: Optional[datetime] = None) -> float:
    """Days elapsed between ``since`` and ``now`` (defaults to current time)."""
    return elapsed_hours(since, now) / 24
