"""
Pytest configuration and fixtures for secfeed tests.

Provides:
- Async test database with SQLite
- Factory fixtures for incidents, raw documents and summary runs
- Mock aiohttp sessions for fetcher and scraper tests
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import pytest_asyncio
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from secfeed.config import IngestConfig, Settings
from secfeed.core.datetime_utils import utc_now
from secfeed.models import Base, Incident, IncidentSource, RawDocument, SummaryRun

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    openai_api_key: str = "test-key"
    huggingface_api_key: str = "test-key"
    gemini_api_key: str = "test-key"
    firecrawl_api_key: str = "test-key"
    firecrawl_api_url: str = "https://firecrawl.test"


@pytest.fixture
def test_settings() -> Settings:
    return TestSettings()


@pytest.fixture
def ingest_config() -> IngestConfig:
    """Ingest config with a single download attempt so tests never sleep."""
    return IngestConfig({"fetch_attempts": 1, "max_items": 50, "fetch_concurrency": 2})


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def raw_document_factory(db_session: AsyncSession):
    """Factory for creating stored raw documents."""

    async def _create_raw_document(
        title: str | None = "Test Advisory",
        body_text: str | None = "Test advisory body",
        url: str = None,
        source: str = "example.com",
        content_hash: str = None,
    ) -> RawDocument:
        if url is None:
            url = f"https://example.com/advisory-{uuid.uuid4().hex[:8]}"

        raw = RawDocument(
            url=url,
            source=source,
            title=title,
            body_text=body_text,
            content_hash=content_hash or uuid.uuid4().hex[:16],
            metadata_json={},
        )
        db_session.add(raw)
        await db_session.flush()
        return raw

    return _create_raw_document


@pytest_asyncio.fixture
async def incident_factory(db_session: AsyncSession, raw_document_factory):
    """Factory for creating incidents, by default linked to one raw document."""

    async def _create_incident(
        canonical_key: str = None,
        title: str = "Test Incident",
        sources: list[RawDocument] = None,
        with_source: bool = True,
        updated_at: datetime = None,
    ) -> Incident:
        if canonical_key is None:
            canonical_key = f"CVE-2024-{uuid.uuid4().int % 100000:05d}"

        incident = Incident(
            canonical_key=canonical_key,
            title=title,
            updated_at=updated_at or utc_now(),
        )
        db_session.add(incident)
        await db_session.flush()

        if sources is None:
            sources = [await raw_document_factory()] if with_source else []

        for offset, raw in enumerate(sources):
            db_session.add(
                IncidentSource(
                    incident_id=incident.id,
                    raw_id=raw.id,
                    created_at=utc_now() + timedelta(seconds=offset),
                )
            )

        await db_session.commit()
        return incident

    return _create_incident


@pytest_asyncio.fixture
async def summary_run_factory(db_session: AsyncSession):
    """Factory for creating stored summary runs (projection not updated)."""

    async def _create_summary_run(
        incident: Incident,
        provider: str = "rule_based",
        model: str | None = None,
        ran_at: datetime = None,
    ) -> SummaryRun:
        run = SummaryRun(
            incident_id=incident.id,
            tl_dr="Test tl;dr",
            summary_md="## Impact\n-",
            citations_json=[],
            provider=provider,
            model=model,
            ran_at=ran_at or utc_now(),
            triggered_by="test",
        )
        db_session.add(run)
        await db_session.flush()
        return run

    return _create_summary_run


# ============================================================================
# Mock Fixtures
# ============================================================================


def _mock_response(
    response_text: str = "",
    response_json: object = None,
    status: int = 200,
    content_type: str | None = None,
) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=response_text)
    mock_response.headers = {"Content-Type": content_type} if content_type else {}

    if response_json is not None:
        mock_response.json = AsyncMock(return_value=response_json)

    if status >= 400:
        error = aiohttp.ClientResponseError(
            request_info=MagicMock(), history=(), status=status, message="error"
        )
        mock_response.raise_for_status = MagicMock(side_effect=error)
    else:
        mock_response.raise_for_status = MagicMock(return_value=None)

    return mock_response


def _context_manager(response: AsyncMock = None, raise_error: Exception = None) -> MagicMock:
    mock_cm = MagicMock()
    if raise_error:
        mock_cm.__aenter__ = AsyncMock(side_effect=raise_error)
    else:
        mock_cm.__aenter__ = AsyncMock(return_value=response)
    mock_cm.__aexit__ = AsyncMock(return_value=None)
    return mock_cm


@pytest.fixture
def mock_aiohttp_session():
    """
    Factory for creating mock aiohttp ClientSession objects.

    Every GET and POST returns the same response.
    """

    def _create_mock(
        response_text: str = "",
        response_json: object = None,
        status: int = 200,
        raise_error: Exception = None,
        content_type: str | None = None,
    ) -> MagicMock:
        mock_session = MagicMock()
        response = _mock_response(response_text, response_json, status, content_type)
        mock_cm = _context_manager(response, raise_error)

        mock_session.get = MagicMock(return_value=mock_cm)
        mock_session.post = MagicMock(return_value=mock_cm)

        return mock_session

    return _create_mock


@pytest.fixture
def routed_aiohttp_session():
    """
    Factory for a mock aiohttp session that answers GETs per URL.

    Routes map a URL to ``(status, text, content_type)`` or to an exception
    raised on entering the request context.
    """

    def _create_mock(routes: dict[str, tuple[int, str, str | None] | Exception]) -> MagicMock:
        def _get(url, *args, **kwargs):
            route = routes[url]
            if isinstance(route, Exception):
                return _context_manager(raise_error=route)
            status, text, content_type = route
            return _context_manager(_mock_response(text, None, status, content_type))

        mock_session = MagicMock()
        mock_session.get = MagicMock(side_effect=_get)
        return mock_session

    return _create_mock


@pytest.fixture
def sample_rss_feed():
    """Sample RSS feed content for testing."""
    return """<?xml version="1.0" encoding="UTF-8"?>
    <rss version="2.0">
        <channel>
            <title>Security Update Guide</title>
            <link>https://example.com</link>
            <item>
                <title>CVE-2024-21412 Internet Shortcut Files Security Feature Bypass</title>
                <link>https://example.com/advisory/CVE-2024-21412</link>
                <description><![CDATA[<p>Security feature bypass &amp; more</p>]]></description>
                <pubDate>Tue, 13 Feb 2024 08:00:00 GMT</pubDate>
            </item>
            <item>
                <title>CVE-2024-21351 Windows SmartScreen Security Feature Bypass</title>
                <link>https://example.com/advisory/CVE-2024-21351</link>
                <description>SmartScreen bypass</description>
                <pubDate>Tue, 13 Feb 2024 08:00:00 GMT</pubDate>
            </item>
        </channel>
    </rss>
    """


@pytest.fixture
def sample_kev_feed():
    """CISA KEV style JSON catalog."""
    return {
        "title": "CISA Catalog of Known Exploited Vulnerabilities",
        "catalogVersion": "2024.03.01",
        "vulnerabilities": [
            {
                "cveID": "CVE-2024-21762",
                "vendorProject": "Fortinet",
                "product": "FortiOS",
                "vulnerabilityName": "Fortinet FortiOS Out-of-Bound Write Vulnerability",
                "dateAdded": "2024-02-09",
                "shortDescription": "Fortinet FortiOS contains an out-of-bound write vulnerability.",
                "notes": "https://fortiguard.com/psirt/FG-IR-24-015",
            },
            {
                "cveID": "CVE-2024-21412",
                "vendorProject": "Microsoft",
                "product": "Windows",
                "vulnerabilityName": "Microsoft Windows Internet Shortcut Files Bypass",
                "dateAdded": "2024-02-13",
                "shortDescription": "Internet Shortcut Files security feature bypass.",
                "notes": "",
            },
        ],
    }
