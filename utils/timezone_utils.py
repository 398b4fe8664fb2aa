"""
UTC time helpers.

All timestamps stored by the dispatcher are timezone-aware UTC datetimes.
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_utc_iso(dt: datetime) -> str:
    """Format a datetime as ISO-8601 in UTC (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_utc_iso(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
