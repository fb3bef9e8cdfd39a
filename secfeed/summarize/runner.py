import uuid
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from secfeed.config import AppConfig, Settings, get_config
from secfeed.core.datetime_utils import utc_now
from secfeed.core.errors import EmptySource, NoSourceMaterial, NotFound, SecfeedError
from secfeed.core.logging import get_logger
from secfeed.models.incident import Incident, IncidentSource, RawDocument
from secfeed.models.summary import SummaryRun
from secfeed.summarize.options import DEFAULT_SUMMARIZER_OPTION, SummarizerOption
from secfeed.summarize.preferences import get_default_provider
from secfeed.summarize.providers import summarize

logger = get_logger(__name__)

TRIGGERED_BY_ADMIN = "admin"
TRIGGERED_BY_PIPELINE = "pipeline"


@dataclass
class SummaryBatchResult:
    """Outcome of one summary batch."""

    provider: SummarizerOption
    changed_incident_ids: list[str] = field(default_factory=list)
    failed: int = 0


def _as_uuid(value: uuid.UUID | str, kind: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise NotFound(f"{kind} not found") from e


async def get_latest_source(db: AsyncSession, incident_id: uuid.UUID) -> RawDocument | None:
    """
    The most recently linked raw document of an incident.

    Ordered by link time; a store whose link table lacks that column is
    queried again ordering by raw document id.
    """
    stmt = (
        select(IncidentSource.raw_id)
        .where(IncidentSource.incident_id == incident_id)
        .order_by(IncidentSource.created_at.desc(), IncidentSource.raw_id.desc())
        .limit(1)
    )
    try:
        raw_id = (await db.execute(stmt)).scalar_one_or_none()
    except (OperationalError, ProgrammingError) as e:
        await db.rollback()
        logger.bind(incident_id=str(incident_id), error=str(e)).warning(
            "incident_source_order_fallback"
        )
        fallback = (
            select(IncidentSource.raw_id)
            .where(IncidentSource.incident_id == incident_id)
            .order_by(IncidentSource.raw_id.desc())
            .limit(1)
        )
        raw_id = (await db.execute(fallback)).scalar_one_or_none()

    if raw_id is None:
        return None
    return await db.get(RawDocument, raw_id)


async def refresh_incident_projection(
    db: AsyncSession,
    incident_id: uuid.UUID,
) -> SummaryRun | None:
    """
    Rewrite an incident's last-summary fields from its run history.

    The newest remaining run wins; with no runs left the fields are cleared.
    Pending inserts and deletes must be flushed before calling this.
    """
    result = await db.execute(
        select(SummaryRun)
        .where(SummaryRun.incident_id == incident_id)
        .order_by(SummaryRun.ran_at.desc(), SummaryRun.created_at.desc())
        .limit(1)
    )
    latest = result.scalar_one_or_none()

    await db.execute(
        update(Incident)
        .where(Incident.id == incident_id)
        .values(
            last_summarized_at=latest.ran_at if latest else None,
            last_summary_provider=latest.provider if latest else None,
            last_summary_model=latest.model if latest else None,
        )
    )
    return latest


async def create_summary_run(
    db: AsyncSession,
    incident_id: uuid.UUID | str,
    provider_override: SummarizerOption | None = None,
    default_provider: SummarizerOption = DEFAULT_SUMMARIZER_OPTION,
    triggered_by: str | None = None,
    settings: Settings | None = None,
    timeout: float = 60.0,
    fallback_to_rule_based: bool = False,
) -> SummaryRun:
    """
    Summarize one incident and append the run to its history.

    Nothing is written unless the provider succeeds. The caller commits.

    Args:
        db: Database session
        incident_id: Incident to summarize
        provider_override: Provider to use instead of ``default_provider``
        default_provider: Provider used when no override is given
        triggered_by: Label stored on the run ("admin", "pipeline", ...)
        settings: API keys and model names for the external providers
        timeout: Per-request timeout for provider calls
        fallback_to_rule_based: Replace a failed provider with the template

    Raises:
        NotFound: no such incident
        NoSourceMaterial: the incident has no linked raw document
        EmptySource: the linked document has neither body nor title
        ProviderFailed: the selected provider failed
    """
    incident_uuid = _as_uuid(incident_id, "Incident")
    incident = await db.get(Incident, incident_uuid)
    if incident is None:
        raise NotFound("Incident not found")
    incident_title = incident.title

    raw = await get_latest_source(db, incident_uuid)
    if raw is None:
        raise NoSourceMaterial()

    text = (raw.body_text or "").strip() or (raw.title or "").strip()
    if not text:
        raise EmptySource()

    option = provider_override or default_provider or DEFAULT_SUMMARIZER_OPTION
    result = await summarize(
        incident_title,
        text,
        option,
        settings or get_config().settings,
        timeout=timeout,
        fallback_to_rule_based=fallback_to_rule_based,
    )

    run = SummaryRun(
        incident_id=incident_uuid,
        tl_dr=result.tl_dr,
        summary_md=result.summary_md,
        citations_json=[c.model_dump() for c in result.citations],
        provider=result.provider,
        model=result.model,
        fallback_from=result.fallback_from,
        ran_at=utc_now(),
        triggered_by=triggered_by,
    )
    db.add(run)
    await db.flush()
    await refresh_incident_projection(db, incident_uuid)

    logger.bind(
        incident_id=str(incident_uuid),
        provider=run.provider,
        model=run.model,
        triggered_by=triggered_by,
    ).info("summary_run_created")
    return run


async def summarize_incident_now(
    db: AsyncSession,
    incident_id: uuid.UUID | str,
    provider_override: SummarizerOption | None = None,
    config: AppConfig | None = None,
) -> SummaryRun:
    """Summarize one incident on demand and commit. Errors propagate."""
    config = config or get_config()
    default_provider = await get_default_provider(db, config.summarizer.default_provider)

    run = await create_summary_run(
        db,
        incident_id,
        provider_override=provider_override,
        default_provider=default_provider,
        triggered_by=TRIGGERED_BY_ADMIN,
        settings=config.settings,
        timeout=config.summarizer.request_timeout_seconds,
        fallback_to_rule_based=config.summarizer.fallback_to_rule_based,
    )
    await db.commit()
    return run


async def delete_summary_run(db: AsyncSession, summary_id: uuid.UUID | str) -> SummaryRun | None:
    """
    Delete one run and recompute its incident's projection.

    Returns:
        The incident's new latest run, or None if no runs remain

    Raises:
        NotFound: no such run
    """
    run = await db.get(SummaryRun, _as_uuid(summary_id, "Summary"))
    if run is None:
        raise NotFound("Summary not found")

    incident_id = run.incident_id
    await db.delete(run)
    await db.flush()

    latest = await refresh_incident_projection(db, incident_id)
    await db.commit()

    logger.bind(
        summary_id=str(summary_id),
        incident_id=str(incident_id),
        remaining_latest=str(latest.id) if latest else None,
    ).info("summary_run_deleted")
    return latest


async def run_summary_batch(
    db: AsyncSession,
    limit: int | None = None,
    provider_override: SummarizerOption | None = None,
    config: AppConfig | None = None,
) -> SummaryBatchResult:
    """
    Summarize the most recently updated incidents.

    One failing incident is logged and skipped. Only incidents that got a
    new run are reported as changed.
    """
    config = config or get_config()
    limit = config.summarizer.batch_limit if limit is None else limit
    provider = provider_override or await get_default_provider(
        db, config.summarizer.default_provider
    )

    result = await db.execute(select(Incident.id).order_by(Incident.updated_at.desc()).limit(limit))
    incident_ids = list(result.scalars().all())

    batch = SummaryBatchResult(provider=provider)
    logger.bind(incidents=len(incident_ids), provider=provider.value).info("summary_batch_started")

    for incident_id in incident_ids:
        try:
            await create_summary_run(
                db,
                incident_id,
                provider_override=provider,
                triggered_by=TRIGGERED_BY_PIPELINE,
                settings=config.settings,
                timeout=config.summarizer.request_timeout_seconds,
                fallback_to_rule_based=config.summarizer.fallback_to_rule_based,
            )
            await db.commit()
        except SecfeedError as e:
            await db.rollback()
            logger.bind(incident_id=str(incident_id), error=str(e)).warning("summary_batch_item_failed")
            batch.failed += 1
            continue
        except SQLAlchemyError as e:
            await db.rollback()
            logger.bind(incident_id=str(incident_id), error=str(e)).error("summary_batch_item_error")
            batch.failed += 1
            continue

        batch.changed_incident_ids.append(str(incident_id))

    logger.bind(
        provider=provider.value,
        changed=len(batch.changed_incident_ids),
        failed=batch.failed,
    ).info("summary_batch_completed")
    return batch
