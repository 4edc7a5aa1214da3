"""Time and timezone utilities."""

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

from digitaltide.core.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC timezone.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from the formats found in feeds and news APIs.

    Accepts datetime objects, ISO 8601 / RFC 2822 strings, epoch seconds and
    feedparser ``struct_time`` values. Returns None when nothing usable is
    found so that optional dates stay optional.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    # feedparser *_parsed fields
    if hasattr(value, "tm_year"):
        try:
            return datetime(*value[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None

    if isinstance(value, str):
        try:
            return to_utc(date_parser.parse(value.strip()))
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Failed to parse datetime '{value}': {e}")

    return None


def age_hours(dt: datetime, now: Optional[datetime] = None) -> float:
    """Get age of datetime in hours relative to ``now`` (never negative)."""
    now = to_utc(now) if now else utc_now()
    delta = now - to_utc(dt)
    return max(0.0, delta.total_seconds() / 3600)
