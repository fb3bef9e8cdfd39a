"""Centralized datetime utilities for consistent timezone handling.

All stored timestamps are naive UTC (SQLAlchemy models use naive UTC).
Feed dates arrive in many shapes, so ``parse_feed_date`` is lenient and
returns None rather than raising.

Usage:
    from secfeed.core.datetime_utils import utc_now, get_cutoff, parse_feed_date

    published = parse_feed_date(record.get("dateAdded"))
    if published and published < get_cutoff(days=14):
        ...
"""

import time as time_module
from datetime import UTC, date, datetime, timedelta
from email.utils import parsedate_to_datetime


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days)
    return utc_now() - delta


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def parse_feed_date(value: object) -> datetime | None:
    """Parse a date found in a feed record into naive UTC.

    Accepts datetimes, dates, ``time.struct_time`` (feedparser's ``*_parsed``),
    ISO 8601 strings (with or without ``Z``), and RFC 822 strings (RSS pubDate).

    Returns:
        Naive UTC datetime, or None when the value is missing or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, time_module.struct_time):
        return datetime(*value[:6])
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return to_naive_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    try:
        return to_naive_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None
