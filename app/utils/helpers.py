"""Shared utility functions.

as_utc:          normalise DB datetimes (SQLite returns naive values)
parse_datetime:  ISO-8601 input parsing for request payloads
parse_bool:      lenient boolean parsing for JSON/query input
"""
import logging
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


def as_utc(dt):
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against the caller-supplied ``now`` go through this helper
    so the same code works in both environments. ``None`` passes through.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime string into a UTC-aware datetime.

    A bare date (YYYY-MM-DD) is read as midnight UTC.
    Raises ValueError on bad input so blueprints can answer 400.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime: {value!r}. Use ISO-8601.") from exc


def parse_bool(value, default=False):
    """Interpret JSON booleans and common string spellings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
