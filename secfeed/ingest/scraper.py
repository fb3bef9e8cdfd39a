import json
from typing import Any

import aiohttp

from secfeed.config import AppConfig, ScrapeConfig
from secfeed.core.datetime_utils import parse_feed_date, utc_now
from secfeed.core.errors import ConfigMissing, FetchFailed
from secfeed.core.logging import get_logger
from secfeed.core.retry import RetryConfig, retry_with_backoff
from secfeed.ingest.base import IngestItem

logger = get_logger(__name__)

SCRAPE_SOURCE = "web"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def normalise_scrape_output(url: str, raw: Any) -> IngestItem:
    """
    Turn a scraping-service response into an IngestItem.

    Looks at the top-level object and its nested ``data`` object. Content is
    markdown, else html, else the pretty-printed response itself.
    """
    data = _as_dict(raw)
    inner = _as_dict(data.get("data"))
    meta = _as_dict(data.get("metadata")) or _as_dict(inner.get("metadata"))

    def pick(*keys: str) -> str | None:
        for obj in (data, inner):
            for key in keys:
                value = obj.get(key)
                if isinstance(value, str) and value.strip():
                    return value
        return None

    markdown = pick("markdown")
    html = pick("html")

    title = pick("title", "pageTitle")
    if title is None:
        meta_title = meta.get("title")
        if isinstance(meta_title, str) and meta_title.strip():
            title = meta_title

    fetched_at = parse_feed_date(pick("fetchedAt", "fetched_at")) or utc_now()
    content = markdown or html or json.dumps(raw, indent=2, ensure_ascii=False, default=str)

    return IngestItem(
        url=url,
        title=title.strip() if title else None,
        content=content,
        fetched_at=fetched_at,
        source=SCRAPE_SOURCE,
        metadata={"format": "scrape", **({"page": meta} if meta else {})},
    )


class FirecrawlScraper:
    """Client for the Firecrawl scrape endpoint (hosted or self-hosted)."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout_seconds: int = 60,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the scraper.

        Args:
            api_url: Base URL of the Firecrawl API
            api_key: Bearer token (optional for self-hosted instances)
            timeout_seconds: Total timeout per scrape call
            session: Optional shared aiohttp session
        """
        if not api_url:
            raise ConfigMissing("FIRECRAWL_API_URL")
        self.endpoint = f"{api_url.rstrip('/')}/v1/scrape"
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    async def scrape(self, url: str) -> IngestItem:
        """Scrape one URL. A single call, no retries."""
        if self._session is not None:
            return await self._scrape(self._session, url)
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            return await self._scrape(session, url)

    async def _scrape(self, session: aiohttp.ClientSession, url: str) -> IngestItem:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "removeBase64Images": True,
        }

        async with session.post(
            self.endpoint,
            json=payload,
            headers=headers,
            timeout=self.timeout,
        ) as response:
            if response.status != 200:
                body = await response.text()
                raise FetchFailed(f"Scrape of {url} returned HTTP {response.status}: {body[:200]}")
            result = await response.json()

        if isinstance(result, dict) and result.get("success") is False:
            raise FetchFailed(f"Scrape of {url} failed: {result.get('error') or 'unknown error'}")

        item = normalise_scrape_output(url, result)
        logger.bind(url=url, title=(item.title or "")[:80]).debug("scrape_completed")
        return item


async def scrape_with_retry(
    scraper: FirecrawlScraper,
    url: str,
    config: ScrapeConfig,
) -> IngestItem:
    """
    Scrape a URL with linear backoff between attempts.

    A client-side timeout aborts at once; otherwise the last error is raised
    once ``config.max_attempts`` attempts are exhausted.
    """
    retry = RetryConfig(
        max_attempts=config.max_attempts,
        backoff_base=config.backoff_seconds,
        linear=True,
        jitter=False,
        retryable_exceptions=(aiohttp.ClientError, FetchFailed),
        abort_exceptions=(TimeoutError,),
    )
    return await retry_with_backoff(
        lambda: scraper.scrape(url),
        config=retry,
        operation_name=f"scrape:{url}",
    )


async def scrape_batch(
    scraper: FirecrawlScraper,
    seeds: list[str],
    config: ScrapeConfig,
) -> list[IngestItem]:
    """Standalone scraping of several seeds; failed seeds are logged and skipped."""
    items: list[IngestItem] = []
    for url in seeds:
        try:
            items.append(await scrape_with_retry(scraper, url, config))
        except (aiohttp.ClientError, FetchFailed, TimeoutError) as e:
            logger.bind(url=url, error=str(e) or type(e).__name__).error("scrape_failed")
    return items


def create_scraper(config: AppConfig) -> FirecrawlScraper:
    """Create the scraping client from config."""
    return FirecrawlScraper(
        api_url=config.settings.firecrawl_api_url,
        api_key=config.settings.firecrawl_api_key,
        timeout_seconds=config.scrape.timeout_seconds,
    )
