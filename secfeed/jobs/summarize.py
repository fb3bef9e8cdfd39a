"""
Summary job.

Run with: python -m secfeed.jobs.summarize

Summarizes the most recently updated incidents with the override provider,
or the persisted default when none is given.
"""

import asyncio

from secfeed.core.database import AsyncSessionLocal
from secfeed.core.logging import get_logger, setup_logging
from secfeed.summarize.options import SummarizerOption
from secfeed.summarize.runner import SummaryBatchResult, run_summary_batch

logger = get_logger(__name__)


async def main(
    limit: int | None = None,
    provider: SummarizerOption | None = None,
) -> SummaryBatchResult:
    """Run the summary job."""
    setup_logging()
    logger.info("summary_job_started")

    async with AsyncSessionLocal() as db:
        try:
            result = await run_summary_batch(db, limit=limit, provider_override=provider)
            logger.bind(
                provider=result.provider.value,
                changed=len(result.changed_incident_ids),
                failed=result.failed,
            ).info("summary_job_completed")
            return result
        except Exception as e:
            logger.bind(error=str(e)).error("summary_job_failed")
            raise


if __name__ == "__main__":
    asyncio.run(main())
