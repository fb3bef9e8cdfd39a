from secfeed.ingest.base import IngestItem
from secfeed.ingest.formats import FeedFormat, sniff_format
from secfeed.ingest.normalizer import extract_cves, hash_content, make_canonical_key
from secfeed.ingest.orchestrator import IngestionResult, ingest_items, run_ingestion

__all__ = [
    "FeedFormat",
    "IngestItem",
    "IngestionResult",
    "extract_cves",
    "hash_content",
    "ingest_items",
    "make_canonical_key",
    "run_ingestion",
    "sniff_format",
]
