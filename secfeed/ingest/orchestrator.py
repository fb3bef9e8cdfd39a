import uuid
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from secfeed.config import AppConfig, get_config
from secfeed.core.datetime_utils import to_naive_utc, utc_now
from secfeed.core.logging import get_logger
from secfeed.ingest.base import IngestItem
from secfeed.ingest.fetcher import FeedFetcher, create_feed_fetcher
from secfeed.ingest.normalizer import extract_cves, hash_content, make_canonical_key
from secfeed.models.incident import Incident, IncidentSource, RawDocument

logger = get_logger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one ingestion run."""

    changed_incident_ids: list[str] = field(default_factory=list)
    items_fetched: int = 0
    new_documents: int = 0
    duplicates: int = 0
    errors: int = 0


async def find_raw_document(db: AsyncSession, content_hash: str) -> uuid.UUID | None:
    """Id of the raw document with this fingerprint, if already ingested."""
    result = await db.execute(select(RawDocument.id).where(RawDocument.content_hash == content_hash))
    return result.scalar_one_or_none()


async def get_or_create_incident(
    db: AsyncSession,
    canonical_key: str,
    title: str | None,
) -> uuid.UUID:
    """
    Find the incident for a canonical key, creating it if needed.

    Runs inside the caller's transaction; the insert is wrapped in a
    savepoint so losing a race on the unique ``canonical_key`` only rolls
    back the savepoint, after which the winner's row is re-read.
    """
    result = await db.execute(select(Incident.id).where(Incident.canonical_key == canonical_key))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    incident = Incident(
        canonical_key=canonical_key,
        title=(title or canonical_key)[:1000],
        kev=False,
    )
    try:
        async with db.begin_nested():
            db.add(incident)
    except IntegrityError:
        result = await db.execute(
            select(Incident.id).where(Incident.canonical_key == canonical_key)
        )
        return result.scalar_one()

    logger.bind(canonical_key=canonical_key, incident_id=str(incident.id)).info("incident_created")
    return incident.id


async def link_source(db: AsyncSession, incident_id: uuid.UUID, raw_id: uuid.UUID) -> None:
    """Idempotently link a raw document to an incident and touch the incident."""
    existing = await db.get(IncidentSource, (incident_id, raw_id))
    if existing is None:
        db.add(IncidentSource(incident_id=incident_id, raw_id=raw_id))
        await db.flush()

    await db.execute(update(Incident).where(Incident.id == incident_id).values(updated_at=utc_now()))


async def ingest_item(db: AsyncSession, item: IngestItem) -> tuple[str | None, bool]:
    """
    Ingest one item in a single transaction.

    The raw document, its incident and the link are committed together, so
    a failure part way leaves nothing behind and the item is picked up again
    on the next run.

    Returns:
        (incident id or None, whether the item was a duplicate)
    """
    fingerprint = hash_content(item.fingerprint_text)

    if await find_raw_document(db, fingerprint) is not None:
        logger.bind(url=item.url, content_hash=fingerprint).debug("raw_item_duplicate")
        return None, True

    cves = extract_cves(item.fingerprint_text)
    canonical_key = make_canonical_key(
        cves,
        source=item.source,
        date=item.fetched_at.date().isoformat(),
        fingerprint=fingerprint,
        url=item.url,
    )

    raw = RawDocument(
        url=item.url,
        source=item.source,
        fetched_at=to_naive_utc(item.fetched_at),
        title=item.title[:1000] if item.title else None,
        body_text=item.content,
        content_hash=fingerprint,
        metadata_json={**item.metadata, "cves": cves} if cves else dict(item.metadata),
    )
    db.add(raw)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.bind(url=item.url, content_hash=fingerprint).debug("raw_item_duplicate")
        return None, True

    incident_id = await get_or_create_incident(db, canonical_key, item.title)
    await link_source(db, incident_id, raw.id)
    await db.commit()

    logger.bind(
        url=item.url,
        canonical_key=canonical_key,
        incident_id=str(incident_id),
    ).debug("raw_item_linked")
    return str(incident_id), False


async def ingest_items(db: AsyncSession, items: list[IngestItem]) -> IngestionResult:
    """
    Deduplicate, store and cluster a batch of items.

    Items are processed in order. A store failure on one item is logged and
    that item skipped; the rest of the batch still runs.
    """
    result = IngestionResult(items_fetched=len(items))
    changed: dict[str, None] = {}

    for item in items:
        try:
            incident_id, duplicate = await ingest_item(db, item)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.bind(url=item.url, error=str(e)).warning("ingest_item_error")
            result.errors += 1
            continue

        if duplicate:
            result.duplicates += 1
        elif incident_id is not None:
            result.new_documents += 1
            changed[incident_id] = None

    result.changed_incident_ids = list(changed)
    return result


async def run_ingestion(
    db: AsyncSession,
    seeds: list[str] | None = None,
    fetcher: FeedFetcher | None = None,
    config: AppConfig | None = None,
) -> IngestionResult:
    """
    Run one ingestion pass over the given (or configured) seeds.

    Safe to re-run: already-seen documents are skipped, so only incidents
    that actually gained a source are reported.

    Raises:
        FetchFailed: if no seed produced anything
    """
    config = config or get_config()
    seeds = config.seeds if seeds is None else seeds
    fetcher = fetcher or create_feed_fetcher(config)

    logger.bind(seed_count=len(seeds)).info("ingestion_started")

    items = await fetcher.fetch(seeds)
    result = await ingest_items(db, items)

    logger.bind(
        items=result.items_fetched,
        new_documents=result.new_documents,
        duplicates=result.duplicates,
        errors=result.errors,
        changed_incidents=len(result.changed_incident_ids),
    ).info("ingestion_completed")
    return result
