from secfeed.summarize.options import DEFAULT_SUMMARIZER_OPTION, SummarizerOption
from secfeed.summarize.providers import summarize
from secfeed.summarize.runner import (
    create_summary_run,
    delete_summary_run,
    run_summary_batch,
    summarize_incident_now,
)

__all__ = [
    "DEFAULT_SUMMARIZER_OPTION",
    "SummarizerOption",
    "create_summary_run",
    "delete_summary_run",
    "run_summary_batch",
    "summarize",
    "summarize_incident_now",
]
