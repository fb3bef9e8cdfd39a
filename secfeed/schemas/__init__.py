from secfeed.schemas.summary import Citation, LLMSummaryOutput, SummaryResult

__all__ = [
    "Citation",
    "LLMSummaryOutput",
    "SummaryResult",
]
