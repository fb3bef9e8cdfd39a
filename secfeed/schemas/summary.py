from pydantic import BaseModel, Field

TL_DR_MAX_LENGTH = 140


class Citation(BaseModel):
    """Citation reference with URL and label."""

    url: str
    label: str


class LLMSummaryOutput(BaseModel):
    """
    JSON shape requested from the OpenAI and Gemini providers.

    Models sometimes overshoot the tl_dr limit, so it is truncated by the
    provider rather than rejected here.
    """

    tl_dr: str = Field(description="One-line summary, max 140 characters")
    summary_md: str = Field(
        default="",
        description="Markdown with Impact, Mitigations and References sections",
    )
    citations: list[Citation] = Field(default_factory=list)


class SummaryResult(BaseModel):
    """What a provider produced for one incident."""

    tl_dr: str = Field(max_length=TL_DR_MAX_LENGTH)
    summary_md: str
    citations: list[Citation] = Field(default_factory=list)
    provider: str
    model: str | None = None
    fallback_from: str | None = None
