"""Tests for the scraping client and its retry path."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from secfeed.config import ScrapeConfig
from secfeed.core.errors import ConfigMissing, FetchFailed
from secfeed.ingest.base import IngestItem
from secfeed.ingest.scraper import (
    FirecrawlScraper,
    normalise_scrape_output,
    scrape_batch,
    scrape_with_retry,
)

pytestmark = pytest.mark.asyncio

PAGE_URL = "https://nvd.nist.gov/vuln/recent"


class TestNormaliseScrapeOutput:
    """Tests for response normalisation."""

    async def test_nested_data_markdown(self):
        raw = {
            "success": True,
            "data": {
                "markdown": "# Recent vulnerabilities",
                "html": "<h1>ignored</h1>",
                "metadata": {"title": "NVD - Recent", "statusCode": 200},
            },
        }
        item = normalise_scrape_output(PAGE_URL, raw)

        assert item.content == "# Recent vulnerabilities"
        assert item.title == "NVD - Recent"
        assert item.source == "web"
        assert item.metadata["format"] == "scrape"
        assert item.metadata["page"]["statusCode"] == 200

    async def test_top_level_html_and_fetched_at(self):
        raw = {"html": "<p>page</p>", "pageTitle": "Page", "fetchedAt": "2024-03-01T12:00:00Z"}
        item = normalise_scrape_output(PAGE_URL, raw)

        assert item.content == "<p>page</p>"
        assert item.title == "Page"
        assert item.fetched_at == datetime(2024, 3, 1, 12, 0)

    async def test_falls_back_to_pretty_json(self):
        raw = {"data": {"links": ["https://example.com"]}}
        item = normalise_scrape_output(PAGE_URL, raw)

        assert '"links"' in item.content
        assert item.title is None


class TestFirecrawlScraper:
    """Tests for the scrape endpoint client."""

    async def test_requires_api_url(self):
        with pytest.raises(ConfigMissing):
            FirecrawlScraper(api_url="")

    async def test_successful_scrape(self, mock_aiohttp_session):
        session = mock_aiohttp_session(
            response_json={"success": True, "data": {"markdown": "body", "metadata": {}}}
        )
        scraper = FirecrawlScraper("https://firecrawl.test/", api_key="k", session=session)

        item = await scraper.scrape(PAGE_URL)

        assert item.content == "body"
        args, kwargs = session.post.call_args
        assert args[0] == "https://firecrawl.test/v1/scrape"
        assert kwargs["json"]["url"] == PAGE_URL
        assert kwargs["headers"]["Authorization"] == "Bearer k"

    async def test_http_error(self, mock_aiohttp_session):
        session = mock_aiohttp_session(response_text="quota exceeded", status=402)
        scraper = FirecrawlScraper("https://firecrawl.test", session=session)

        with pytest.raises(FetchFailed, match="402"):
            await scraper.scrape(PAGE_URL)

    async def test_unsuccessful_payload(self, mock_aiohttp_session):
        session = mock_aiohttp_session(response_json={"success": False, "error": "blocked"})
        scraper = FirecrawlScraper("https://firecrawl.test", session=session)

        with pytest.raises(FetchFailed, match="blocked"):
            await scraper.scrape(PAGE_URL)


class TestScrapeWithRetry:
    """Tests for the standalone retry policy."""

    @pytest.fixture
    def config(self):
        return ScrapeConfig({"max_attempts": 3, "backoff_seconds": 2.0})

    async def test_linear_backoff_then_success(self, config):
        item = IngestItem(url=PAGE_URL, content="ok")
        scraper = AsyncMock()
        scraper.scrape = AsyncMock(side_effect=[FetchFailed("a"), FetchFailed("b"), item])

        with patch("secfeed.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await scrape_with_retry(scraper, PAGE_URL, config)

        assert result is item
        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 4.0]

    async def test_surfaces_last_error(self, config):
        scraper = AsyncMock()
        scraper.scrape = AsyncMock(
            side_effect=[FetchFailed("first"), aiohttp.ClientError("second"), FetchFailed("last")]
        )

        with patch("secfeed.core.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(FetchFailed, match="last"):
                await scrape_with_retry(scraper, PAGE_URL, config)

        assert scraper.scrape.await_count == 3

    async def test_timeout_aborts_immediately(self, config):
        scraper = AsyncMock()
        scraper.scrape = AsyncMock(side_effect=TimeoutError())

        with patch("secfeed.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(TimeoutError):
                await scrape_with_retry(scraper, PAGE_URL, config)

        assert scraper.scrape.await_count == 1
        mock_sleep.assert_not_awaited()

    async def test_batch_skips_failures(self, config):
        good = IngestItem(url="https://example.com/ok", content="ok")
        scraper = AsyncMock()
        scraper.scrape = AsyncMock(side_effect=[TimeoutError(), good])

        items = await scrape_batch(scraper, [PAGE_URL, "https://example.com/ok"], config)

        assert items == [good]
