import enum
from dataclasses import dataclass


class SummarizerOption(str, enum.Enum):
    """Summarization backends an incident can be run through."""

    RULE_BASED = "rule_based"
    HUGGINGFACE = "huggingface"
    OPENAI = "openai"
    GEMINI = "gemini"


DEFAULT_SUMMARIZER_OPTION = SummarizerOption.RULE_BASED


@dataclass(frozen=True)
class OptionInfo:
    label: str
    description: str


SUMMARIZER_OPTION_METADATA: dict[SummarizerOption, OptionInfo] = {
    SummarizerOption.RULE_BASED: OptionInfo(
        label="Rule-based (default)",
        description="Quick template summary without external APIs.",
    ),
    SummarizerOption.HUGGINGFACE: OptionInfo(
        label="Hugging Face (free tier)",
        description="Uses the Hugging Face Inference API and the configured model to draft summaries.",
    ),
    SummarizerOption.OPENAI: OptionInfo(
        label="OpenAI API",
        description="Calls the configured OpenAI model for structured summaries (requires API key).",
    ),
    SummarizerOption.GEMINI: OptionInfo(
        label="Gemini",
        description="Uses Gemini (Google Generative Language API) for structured summaries.",
    ),
}


def is_summarizer_option(value: object) -> bool:
    """True if value is one of the option tags (enum member or its string)."""
    return isinstance(value, str) and value in SummarizerOption._value2member_map_


def parse_summarizer_option(value: object) -> SummarizerOption | None:
    """The option named by value, or None if it is not a known tag."""
    if isinstance(value, SummarizerOption):
        return value
    if is_summarizer_option(value):
        return SummarizerOption(value)
    return None


def summarizer_label(option: SummarizerOption | str | None) -> str:
    """Human-readable label for an option."""
    if not option:
        return "Unknown"
    parsed = parse_summarizer_option(option)
    if parsed is None:
        return str(option)
    return SUMMARIZER_OPTION_METADATA[parsed].label
