"""
utils/time_utils.py

Purpose: Timestamp helpers

- Current UTC time for persisted documents
- ISO formatting for outbound events
"""

from datetime import datetime, timezone
from typing import Optional

def utcnow() -> datetime:
    """
    Returns the current time as an aware UTC datetime.
    """
    return datetime.now(timezone.utc)

def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """
    Formats a datetime as ISO-8601, treating naive values as UTC
    (Motor returns naive datetimes unless tz_aware is enabled).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()

def iso_now() -> str:
    """
    Returns the current UTC time as an ISO-8601 string.
    """
    return utcnow().isoformat()
