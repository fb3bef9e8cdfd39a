import asyncio
from dataclasses import dataclass, field
from urllib.parse import urlparse

import aiohttp

from secfeed.config import AppConfig, IngestConfig
from secfeed.core.errors import ConfigMissing, FetchFailed, ParseFailed
from secfeed.core.logging import get_logger
from secfeed.core.retry import RetryConfig, retry_with_backoff
from secfeed.ingest.base import IngestItem
from secfeed.ingest.filters import RecencyPolicy, create_recency_policy
from secfeed.ingest.formats import FeedFormat, sniff_format
from secfeed.ingest.parsers import parse_feed
from secfeed.ingest.scraper import FirecrawlScraper, create_scraper

logger = get_logger(__name__)

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class SeedOutcome:
    """What one seed produced."""

    url: str
    items: list[IngestItem] = field(default_factory=list)
    failed: bool = False
    path: str = "structured"  # structured | scrape
    error: str | None = None


class FeedFetcher:
    """
    Fetches seed URLs and turns them into IngestItems.

    Each seed is downloaded and sniffed; structured payloads go to the
    JSON/CSV/RSS parsers, anything else (or a failed download) goes to a
    single scraping call. Seeds are independent: one failing seed never
    stops the others.
    """

    def __init__(
        self,
        config: IngestConfig,
        scraper: FirecrawlScraper | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            config: Ingest configuration (timeouts, attempts, recency bounds)
            scraper: Scraping client used when no structured feed is found
            session: Optional shared aiohttp session
        """
        self.config = config
        self.scraper = scraper
        self.timeout = aiohttp.ClientTimeout(total=config.fetch_timeout_seconds)
        self._session = session

    def _policy(self) -> RecencyPolicy:
        return create_recency_policy(self.config.max_items, self.config.lookback_days)

    async def fetch(self, seeds: list[str]) -> list[IngestItem]:
        """
        Fetch all seeds and return their items in seed order.

        Raises:
            FetchFailed: if every seed failed and no items were collected
        """
        if not seeds:
            return []

        if self._session is not None:
            outcomes = await self._fetch_all(self._session, seeds)
        else:
            async with aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.config.user_agent},
            ) as session:
                outcomes = await self._fetch_all(session, seeds)

        items = [item for outcome in outcomes for item in outcome.items]
        failed = [outcome for outcome in outcomes if outcome.failed]
        scraped = [outcome for outcome in outcomes if outcome.path == "scrape"]

        logger.bind(
            seeds=len(seeds),
            scraped=len(scraped),
            failed=len(failed),
            items=len(items),
        ).info("feed_fetch_completed")

        if len(failed) == len(outcomes) and not items:
            errors = "; ".join(f"{o.url}: {o.error}" for o in failed)
            raise FetchFailed(f"No sources succeeded ({errors})")

        return items

    async def _fetch_all(
        self,
        session: aiohttp.ClientSession,
        seeds: list[str],
    ) -> list[SeedOutcome]:
        semaphore = asyncio.Semaphore(max(1, self.config.fetch_concurrency))

        async def bounded(url: str) -> SeedOutcome:
            async with semaphore:
                try:
                    return await self.fetch_seed(session, url)
                except Exception as e:
                    logger.bind(url=url, error=str(e)).error("seed_unexpected_error")
                    return SeedOutcome(url=url, failed=True, error=str(e))

        return list(await asyncio.gather(*(bounded(url) for url in seeds)))

    async def fetch_seed(self, session: aiohttp.ClientSession, url: str) -> SeedOutcome:
        """Fetch one seed through the structured path, else the scraping path."""
        source = (urlparse(url).hostname or "web").lower()

        try:
            text, content_type = await self._download(session, url)
        except (aiohttp.ClientError, FetchFailed, TimeoutError) as e:
            logger.bind(url=url, error=str(e) or type(e).__name__).warning("seed_download_failed")
            return await self._scrape_fallback(url)

        feed_format = sniff_format(url, content_type, text)
        if feed_format is FeedFormat.NONE:
            logger.bind(url=url, content_type=content_type).debug("seed_not_structured")
            return await self._scrape_fallback(url)

        try:
            items = parse_feed(feed_format, text, url, self._policy(), source)
        except ParseFailed as e:
            logger.bind(url=url, format=feed_format.value, error=str(e)).warning("seed_parse_failed")
            return SeedOutcome(url=url, failed=True, error=str(e))

        logger.bind(url=url, format=feed_format.value, items=len(items)).info("seed_parsed")
        return SeedOutcome(url=url, items=items)

    async def _download(self, session: aiohttp.ClientSession, url: str) -> tuple[str, str | None]:
        """GET a seed with retry; returns (text, content_type)."""

        async def attempt() -> tuple[str, str | None]:
            async with session.get(url, timeout=self.timeout) as response:
                if response.status in RETRYABLE_STATUSES:
                    response.raise_for_status()
                if response.status != 200:
                    raise FetchFailed(f"HTTP {response.status} from {url}")
                text = await response.text()
                return text, response.headers.get("Content-Type")

        retry = RetryConfig(
            max_attempts=max(1, self.config.fetch_attempts),
            retryable_exceptions=(aiohttp.ClientError, TimeoutError),
        )
        return await retry_with_backoff(attempt, config=retry, operation_name=f"fetch:{url}")

    async def _scrape_fallback(self, url: str) -> SeedOutcome:
        """One scraping call for a seed with no structured feed."""
        if self.scraper is None:
            return SeedOutcome(url=url, failed=True, path="scrape", error="no scraper configured")

        try:
            item = await self.scraper.scrape(url)
        except (aiohttp.ClientError, FetchFailed, TimeoutError) as e:
            error = str(e) or type(e).__name__
            logger.bind(url=url, error=error).warning("seed_scrape_failed")
            return SeedOutcome(url=url, failed=True, path="scrape", error=error)

        return SeedOutcome(url=url, items=[item], path="scrape")


def create_feed_fetcher(config: AppConfig) -> FeedFetcher:
    """
    Create the feed fetcher from config.

    Without a scraping service URL the fetcher still handles structured
    seeds; seeds that need scraping then fail individually.
    """
    try:
        scraper = create_scraper(config)
    except ConfigMissing as e:
        logger.bind(setting=e.name).warning("scraper_not_configured")
        scraper = None
    return FeedFetcher(config.ingest, scraper=scraper)
