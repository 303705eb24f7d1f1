"""
Date and time utilities for the ETL system.
All timestamps are naive UTC so they compare cleanly after a database round trip.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from dateutil import parser


def utc_now() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a cell value into a datetime.

    Args:
        value: date/datetime instance or anything whose string form is a date

    Returns:
        Parsed datetime, or None when the value is blank or not a date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None

    try:
        return to_naive_utc(parser.parse(text))
    except (ValueError, OverflowError, parser.ParserError):
        return None


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def format_duration(seconds: Optional[float]) -> str:
    """
    Format a duration in seconds as "45s", "3m 20s" or "2h 5m".

    Args:
        seconds: Duration in seconds, or None

    Returns:
        Human-readable duration string, "-" when unknown
    """
    if seconds is None:
        return "-"

    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"

    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours}h {minutes}m"
