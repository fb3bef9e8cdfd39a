"""Feed format sniffing.

``sniff_format`` is a pure function: the URL gives a hint, while the
response content-type and the payload shape are authoritative. When
neither of those is conclusive the hint wins.
"""

import enum
from urllib.parse import urlparse


class FeedFormat(str, enum.Enum):
    """Structured feed shapes understood by the parsers."""

    JSON = "json"
    CSV = "csv"
    RSS = "rss"
    NONE = "none"


def format_hint_from_url(url: str) -> FeedFormat:
    """Guess the feed format from URL suffix and path segments."""
    path = urlparse(url).path.lower() if "://" in url else url.lower()

    if path.endswith(".json") or "/feeds/" in path:
        return FeedFormat.JSON
    if path.endswith(".csv"):
        return FeedFormat.CSV
    if path.endswith((".rss", ".xml", "/rss")) or "/rss/" in path:
        return FeedFormat.RSS
    return FeedFormat.NONE


def format_from_content_type(content_type: str | None) -> FeedFormat | None:
    """Map a Content-Type header to a format, or None if not conclusive."""
    if not content_type:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()

    if media_type.endswith("json"):
        return FeedFormat.JSON
    if media_type in ("text/csv", "application/csv", "text/comma-separated-values"):
        return FeedFormat.CSV
    if media_type.endswith("xml"):
        return FeedFormat.RSS
    if media_type == "text/html":
        return FeedFormat.NONE
    return None


def format_from_payload(text: str | None) -> FeedFormat | None:
    """Inspect the start of a payload, or None if the shape is ambiguous."""
    if not text:
        return None
    head = text.lstrip("\ufeff \t\r\n")[:512]
    lowered = head.lower()

    if head.startswith(("{", "[")):
        return FeedFormat.JSON
    if lowered.startswith(("<?xml", "<rss", "<feed", "<rdf:rdf")):
        return FeedFormat.RSS
    if lowered.startswith(("<!doctype html", "<html")):
        return FeedFormat.NONE

    lines = [line for line in head.splitlines() if line.strip()]
    if len(lines) >= 2 and "," in lines[0] and "," in lines[1]:
        return FeedFormat.CSV
    return None


def sniff_format(url: str, content_type: str | None = None, text: str | None = None) -> FeedFormat:
    """
    Decide the format of a fetched seed.

    Args:
        url: Seed URL (source of the hint)
        content_type: Value of the HTTP Content-Type header, if any
        text: Decoded response body, if any

    Returns:
        The detected FeedFormat; FeedFormat.NONE sends the seed to scraping
    """
    hint = format_hint_from_url(url)

    declared = format_from_content_type(content_type)
    if declared is not None and declared is not FeedFormat.NONE:
        return declared

    shape = format_from_payload(text)
    if shape is not None:
        return shape

    if declared is FeedFormat.NONE:
        return FeedFormat.NONE
    return hint
