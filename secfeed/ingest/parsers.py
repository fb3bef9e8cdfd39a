"""Record parsers for structured advisory feeds.

Each parser turns one seed's payload into IngestItems, applying the
seed's RecencyPolicy as it goes. A malformed payload raises ParseFailed;
the fetcher logs it and moves on to the next seed.
"""

import csv
import io
import json
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import feedparser

from secfeed.core.datetime_utils import parse_feed_date, utc_now
from secfeed.core.errors import ParseFailed
from secfeed.core.logging import get_logger
from secfeed.ingest.base import IngestItem
from secfeed.ingest.filters import RecencyPolicy
from secfeed.ingest.formats import FeedFormat
from secfeed.ingest.normalizer import clean_html, truncate_text

logger = get_logger(__name__)

# Candidate field names per logical field, in priority order.
# Covers CISA KEV, NVD/OSV style exports and generic advisory lists.
TITLE_FIELDS = (
    "title",
    "name",
    "vulnerabilityName",
    "headline",
    "summary",
    "shortDescription",
    "cveID",
    "cve_id",
    "id",
)
CVE_FIELDS = ("cveID", "cve_id", "cveId", "cve", "CVE", "id")
DESCRIPTION_FIELDS = (
    "description",
    "shortDescription",
    "summary",
    "details",
    "content",
    "body",
    "notes",
)
DATE_FIELDS = (
    "dateAdded",
    "published",
    "publishedDate",
    "datePublished",
    "pubDate",
    "date",
    "updated",
    "lastModified",
    "modified",
)
VENDOR_FIELDS = ("vendorProject", "vendor", "vendor_name")
PRODUCT_FIELDS = ("product", "product_name", "affected_product")
REFERENCE_FIELDS = ("references", "refs", "url", "link", "notes")
LINK_FIELDS = ("url", "link", "href", "advisoryUrl")

_URL_PATTERN = re.compile(r"https?://[^\s;,<>\"']+")


def _first_string(record: Mapping[str, Any], fields: tuple[str, ...]) -> str | None:
    """Return the first non-empty string value among candidate fields."""
    for name in fields:
        value = record.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _collect_references(value: Any) -> list[str]:
    """Flatten a references field (string, list of strings or dicts) into URLs."""
    if isinstance(value, str):
        return _URL_PATTERN.findall(value)
    refs: list[str] = []
    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, str):
                refs.extend(_URL_PATTERN.findall(entry))
            elif isinstance(entry, Mapping):
                url = entry.get("url") or entry.get("href")
                if isinstance(url, str) and url.strip():
                    refs.append(url.strip())
    return refs


def _references(record: Mapping[str, Any]) -> list[str]:
    refs: list[str] = []
    for name in REFERENCE_FIELDS:
        refs.extend(_collect_references(record.get(name)))
    return list(dict.fromkeys(refs))


def _compose_body(
    description: str | None,
    cve: str | None,
    vendor: str | None,
    product: str | None,
    published: str | None,
    references: list[str],
) -> str:
    """Render the descriptive fields of a record as markdown-ish text."""
    lines = [description] if description else []
    if cve:
        lines.append(f"CVE: {cve}")
    if vendor:
        lines.append(f"Vendor: {vendor}")
    if product:
        lines.append(f"Product: {product}")
    if published:
        lines.append(f"Published: {published}")
    if references:
        lines.append("References:")
        lines.extend(f"- {ref}" for ref in references)
    return "\n".join(lines)


def _record_to_item(
    record: Mapping[str, Any],
    raw: Any,
    seed_url: str,
    source: str,
    fetched_at: datetime,
    feed_format: FeedFormat,
    published: datetime | None,
    date_text: str | None,
) -> IngestItem:
    """Build an IngestItem from a dict-like record (JSON object or CSV row)."""
    title = _first_string(record, TITLE_FIELDS)
    cve = _first_string(record, CVE_FIELDS)
    if cve and not cve.upper().startswith("CVE-"):
        cve = None
    description = _first_string(record, DESCRIPTION_FIELDS)
    vendor = _first_string(record, VENDOR_FIELDS)
    product = _first_string(record, PRODUCT_FIELDS)
    references = _references(record)

    link = _first_string(record, LINK_FIELDS)
    url = link if link and link.startswith(("http://", "https://")) else seed_url

    if description:
        body = _compose_body(description, cve, vendor, product, date_text, references)
    else:
        body = json.dumps(raw, indent=2, ensure_ascii=False, default=str)

    metadata = {
        "format": feed_format.value,
        "feed_url": seed_url,
        "cve": cve,
        "vendor": vendor,
        "product": product,
        "published": date_text,
        "references": references or None,
    }

    return IngestItem(
        url=url,
        title=truncate_text(clean_html(title), 500) if title else None,
        content=body,
        fetched_at=fetched_at,
        published_at=published,
        source=source,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def _locate_records(payload: Any) -> list[Any] | None:
    """The top-level array, or the first array-valued top-level field."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for value in payload.values():
            if isinstance(value, list):
                return value
    return None


def parse_json_feed(
    text: str,
    seed_url: str,
    policy: RecencyPolicy,
    source: str,
) -> list[IngestItem]:
    """Parse a JSON advisory feed (array, or object holding an array)."""
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseFailed(f"Malformed JSON from {seed_url}: {e}") from e

    fetched_at = utc_now()
    records = _locate_records(payload)

    if records is None:
        # No array anywhere at the top level: one item for the whole document
        wrapper = payload if isinstance(payload, dict) else {"value": payload}
        return [
            _record_to_item(
                wrapper, payload, seed_url, source, fetched_at, FeedFormat.JSON, None, None
            )
        ]

    items: list[IngestItem] = []
    for raw in records:
        record = raw if isinstance(raw, dict) else {"value": raw}
        date_text = _first_string(record, DATE_FIELDS)
        published = parse_feed_date(date_text)

        if not policy.admit(published):
            if policy.full:
                break
            continue

        items.append(
            _record_to_item(
                record, raw, seed_url, source, fetched_at, FeedFormat.JSON, published, date_text
            )
        )

    logger.bind(seed_url=seed_url, records=len(records), kept=len(items)).debug("json_feed_parsed")
    return items


def _normalize_header(name: str) -> str:
    return re.sub(r"[\s_\-]+", "", name.strip().lower())


class _CsvRow(dict):
    """Row mapping whose lookups try case and spacing variants of a column name."""

    def get(self, key: str, default: Any = None) -> Any:
        return super().get(_normalize_header(key), default)


def parse_csv_feed(
    text: str,
    seed_url: str,
    policy: RecencyPolicy,
    source: str,
) -> list[IngestItem]:
    """Parse a CSV advisory table whose first line is the header."""
    try:
        rows = list(csv.reader(io.StringIO(text)))
    except csv.Error as e:
        raise ParseFailed(f"Malformed CSV from {seed_url}: {e}") from e

    if not rows:
        return []

    header = [_normalize_header(h) for h in rows[0]]
    raw_header = [h.strip() for h in rows[0]]
    fetched_at = utc_now()

    items: list[IngestItem] = []
    for cells in rows[1:]:
        if not any(cell.strip() for cell in cells):
            continue

        record = _CsvRow(zip(header, (cell.strip() for cell in cells), strict=False))
        raw = dict(zip(raw_header, (cell.strip() for cell in cells), strict=False))
        date_text = _first_string(record, DATE_FIELDS)
        published = parse_feed_date(date_text)

        if not policy.admit(published):
            if policy.full:
                break
            continue

        items.append(
            _record_to_item(
                record, raw, seed_url, source, fetched_at, FeedFormat.CSV, published, date_text
            )
        )

    logger.bind(seed_url=seed_url, rows=len(rows) - 1, kept=len(items)).debug("csv_feed_parsed")
    return items


def parse_rss_feed(
    text: str,
    seed_url: str,
    policy: RecencyPolicy,
    source: str,
) -> list[IngestItem]:
    """Parse an RSS or Atom feed; each item/entry becomes one IngestItem."""
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise ParseFailed(f"Malformed XML from {seed_url}: {feed.get('bozo_exception')}")

    fetched_at = utc_now()
    items: list[IngestItem] = []

    for entry in feed.entries:
        date_text = entry.get("published") or entry.get("updated")
        published = None
        for date_field in ("published_parsed", "updated_parsed"):
            published = parse_feed_date(entry.get(date_field))
            if published:
                break
        if published is None:
            published = parse_feed_date(date_text)

        if not policy.admit(published):
            if policy.full:
                break
            continue

        # description first, content:encoded when there is no description
        body = entry.get("summary") or ""
        if not body and entry.get("content"):
            body = entry.content[0].get("value", "")  # type: ignore[attr-defined]

        title = clean_html(entry.get("title", "")) or None
        metadata = {
            "format": FeedFormat.RSS.value,
            "feed_url": seed_url,
            "guid": entry.get("id"),
            "published": date_text,
        }

        items.append(
            IngestItem(
                url=entry.get("link") or seed_url,
                title=truncate_text(title, 500) if title else None,
                content=truncate_text(clean_html(body)) if body else None,
                fetched_at=fetched_at,
                published_at=published,
                source=source,
                metadata={k: v for k, v in metadata.items() if v is not None},
            )
        )

    logger.bind(seed_url=seed_url, entries=len(feed.entries), kept=len(items)).debug(
        "rss_feed_parsed"
    )
    return items


PARSERS: dict[FeedFormat, Callable[[str, str, RecencyPolicy, str], list[IngestItem]]] = {
    FeedFormat.JSON: parse_json_feed,
    FeedFormat.CSV: parse_csv_feed,
    FeedFormat.RSS: parse_rss_feed,
}


def parse_feed(
    feed_format: FeedFormat,
    text: str,
    seed_url: str,
    policy: RecencyPolicy,
    source: str,
) -> list[IngestItem]:
    """Dispatch a payload to the parser for its detected format."""
    parser = PARSERS.get(feed_format)
    if parser is None:
        raise ValueError(f"No parser for format: {feed_format.value}")
    return parser(text, seed_url, policy, source)
