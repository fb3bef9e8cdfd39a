import html as html_module
import re
from collections.abc import Iterable
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from secfeed.core.logging import get_logger

logger = get_logger(__name__)

CVE_PATTERN = re.compile(r"\bCVE-\d{4}-\d{4,}\b", re.IGNORECASE)

FINGERPRINT_PREFIX_LENGTH = 12

_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

# Tracking parameters to strip from URLs
TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
}


def hash_content(text: str) -> str:
    """
    Fingerprint text for exact-duplicate detection.

    64-bit FNV-1a over the UTF-8 bytes, as 16 lowercase hex characters.
    Not suitable for anything security related.
    """
    h = _FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _MASK_64
    return f"{h:016x}"


def extract_cves(text: str) -> list[str]:
    """
    Extract CVE IDs from text, upper-cased and de-duplicated.

    Pattern: CVE-YYYY-NNNN (4-digit year, 4+ digit sequence)
    """
    return list(dict.fromkeys(match.upper() for match in CVE_PATTERN.findall(text or "")))


def canonicalize_url(url: str) -> str:
    """
    Canonicalize a URL before hashing it into a fallback key.

    - Normalize scheme to https
    - Lowercase hostname
    - Remove trailing slashes
    - Strip tracking parameters (utm_*, ref, fbclid, etc.)
    - Sort remaining query params
    """
    try:
        parsed = urlparse(url)

        if not parsed.netloc or parsed.scheme not in ("http", "https"):
            return url

        query = parse_qs(parsed.query)
        clean_query = {k: v for k, v in query.items() if k.lower() not in TRACKING_PARAMS}
        sorted_query = urlencode(sorted(clean_query.items()), doseq=True)

        return urlunparse(
            (
                "https",
                parsed.netloc.lower(),
                parsed.path.rstrip("/") or "/",
                "",
                sorted_query,
                "",
            )
        )
    except Exception as e:
        logger.bind(url=url, error=str(e)).debug("url_canonicalization_failed")
        return url


def make_canonical_key(
    cves: Iterable[str],
    source: str | None = None,
    date: str | None = None,
    fingerprint: str | None = None,
    url: str | None = None,
) -> str:
    """
    Derive the clustering key for a document.

    Priority:
    1. Lexicographically smallest CVE ID, so every document about a CVE
       lands in the same incident whichever arrives first
    2. ``source:YYYY-MM-DD:prefix`` where prefix is the first 12 chars of the
       fingerprint, else of the URL hash, else of the ``source-date`` hash
    """
    upper = sorted(c.upper() for c in cves)
    if upper:
        return upper[0]

    source_part = (source or "misc").lower()
    date_part = (date or "")[:10] or "unknown"

    if fingerprint:
        prefix = fingerprint[:FINGERPRINT_PREFIX_LENGTH]
    elif url:
        prefix = hash_content(canonicalize_url(url))[:FINGERPRINT_PREFIX_LENGTH]
    else:
        prefix = hash_content(f"{source_part}-{date_part}")[:FINGERPRINT_PREFIX_LENGTH]

    return f"{source_part}:{date_part}:{prefix}"


def clean_html(html: str) -> str:
    """Remove HTML tags and decode entities."""
    text = re.sub(r"<[^>]+>", " ", html)
    text = html_module.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


def truncate_text(text: str, max_length: int = 8000) -> str:
    """Truncate text to max length, breaking at word boundary."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        truncated = truncated[:last_space]
    return truncated + "..."
