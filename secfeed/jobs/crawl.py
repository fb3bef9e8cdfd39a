"""
Crawl job.

Run with: python -m secfeed.jobs.crawl

This job:
1. Fetches every seed (structured feed, else scraping service)
2. Stores new raw documents, skipping already-seen fingerprints
3. Clusters them into incidents by canonical key
"""

import asyncio

from secfeed.core.database import AsyncSessionLocal
from secfeed.core.logging import get_logger, setup_logging
from secfeed.ingest.orchestrator import IngestionResult, run_ingestion

logger = get_logger(__name__)


async def main(seeds: list[str] | None = None) -> IngestionResult:
    """Run the crawl job."""
    setup_logging()
    logger.info("crawl_job_started")

    async with AsyncSessionLocal() as db:
        try:
            result = await run_ingestion(db, seeds=seeds)
            logger.bind(changed=len(result.changed_incident_ids)).info("crawl_job_completed")
            return result
        except Exception as e:
            logger.bind(error=str(e)).error("crawl_job_failed")
            raise


if __name__ == "__main__":
    asyncio.run(main())
