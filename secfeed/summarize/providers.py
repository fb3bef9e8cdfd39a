"""Summarization providers.

Each provider turns ``(title, text)`` into a SummaryResult or raises.
Providers are plain async functions keyed by their SummarizerOption tag;
``summarize`` dispatches on the tag and wraps every failure in
ProviderFailed carrying the provider name.
"""

import json
import re
from collections.abc import Awaitable, Callable
from typing import Any

import backoff
import httpx
from openai import AsyncOpenAI, RateLimitError
from pydantic import ValidationError

from secfeed.config import Settings
from secfeed.core.errors import ConfigMissing, ProviderFailed
from secfeed.core.logging import get_logger
from secfeed.schemas.summary import TL_DR_MAX_LENGTH, LLMSummaryOutput, SummaryResult
from secfeed.summarize.options import SummarizerOption

logger = get_logger(__name__)

LLM_TEXT_LIMIT = 6000
HUGGINGFACE_TEXT_LIMIT = 5000
RETRYABLE_HTTP_STATUSES = (429, 503)

SYSTEM_PROMPT = """You are a security analyst writing short briefings on vulnerability advisories.

Rules:
- Only use facts stated in the advisory text
- tl_dr is a single line of at most 140 characters
- summary_md is markdown with exactly three sections: "## Impact", "## Mitigations", "## References"
- Mitigations should be concrete actions (patch versions, workarounds, configuration changes)
- References may only cite URLs that appear in the advisory text
- If the text does not say, write "-" rather than guessing

Respond with a JSON object with keys "tl_dr", "summary_md" and "citations"
(a list of {"url": ..., "label": ...} objects)."""

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _clip_tl_dr(text: str) -> str:
    return " ".join(text.split())[:TL_DR_MAX_LENGTH]


def _non_blank_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def render_summary_md(impact: list[str], mitigations: list[str]) -> str:
    """The three-section Impact / Mitigations / References template."""

    def section(heading: str, entries: list[str]) -> list[str]:
        return [f"## {heading}", *([f"- {entry}" for entry in entries] or ["-"])]

    return "\n".join(
        [
            *section("Impact", impact),
            "",
            *section("Mitigations", mitigations),
            "",
            "## References",
            "- (ref:source)",
        ]
    )


def build_prompt(title: str | None, text: str) -> str:
    """User prompt shared by the OpenAI and Gemini providers."""
    return (
        f"Title: {title or ''}\n"
        f"Text:\n{text[:LLM_TEXT_LIMIT]}\n\n"
        "Return JSON with keys tl_dr (<=140 chars), summary_md (markdown with "
        "Impact/Mitigations/References) and citations."
    )


def parse_llm_output(content: str) -> LLMSummaryOutput:
    """Parse a model's JSON reply, tolerating a ```json fenced block."""
    cleaned = _JSON_FENCE.sub("", content.strip())
    try:
        return LLMSummaryOutput.model_validate_json(cleaned)
    except ValidationError as e:
        raise ValueError(f"unexpected response shape: {e.errors()[0].get('msg', e)}") from e


def _to_result(
    output: LLMSummaryOutput,
    title: str | None,
    option: SummarizerOption,
    model: str,
) -> SummaryResult:
    if not output.summary_md.strip():
        raise ValueError("returned empty output")
    return SummaryResult(
        tl_dr=_clip_tl_dr(output.tl_dr or title or ""),
        summary_md=output.summary_md.strip(),
        citations=output.citations,
        provider=option.value,
        model=model,
    )


def _give_up_http(e: Exception) -> bool:
    return (
        isinstance(e, httpx.HTTPStatusError)
        and e.response.status_code not in RETRYABLE_HTTP_STATUSES
    )


async def rule_based_summary(
    title: str | None,
    text: str,
    settings: Settings | None = None,
    timeout: float = 60.0,
) -> SummaryResult:
    """Template summary from the first two non-blank lines. Never fails."""
    lines = _non_blank_lines(text)
    tl_dr = (title or "").strip() or (lines[0] if lines else "")

    return SummaryResult(
        tl_dr=_clip_tl_dr(tl_dr),
        summary_md=render_summary_md(lines[:1], lines[1:2]),
        citations=[],
        provider=SummarizerOption.RULE_BASED.value,
        model=None,
    )


@backoff.on_exception(
    backoff.expo,
    RateLimitError,
    max_tries=5,
    max_time=120,
)
async def _openai_completion(client: AsyncOpenAI, model: str, prompt: str) -> str:
    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        response_format={"type": "json_object"},
        temperature=0.2,
    )
    if not response.choices:
        raise ValueError("response contained no choices")

    usage = response.usage
    if usage:
        logger.bind(model=model, total_tokens=usage.total_tokens).debug("openai_summary_usage")
    return response.choices[0].message.content or ""


async def openai_summary(
    title: str | None,
    text: str,
    settings: Settings,
    timeout: float = 60.0,
    client: AsyncOpenAI | None = None,
) -> SummaryResult:
    """Structured summary from the OpenAI chat completions API."""
    if client is None:
        if not settings.openai_api_key:
            raise ConfigMissing("OPENAI_API_KEY")
        client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=timeout)

    content = await _openai_completion(client, settings.openai_model, build_prompt(title, text))
    return _to_result(parse_llm_output(content), title, SummarizerOption.OPENAI, settings.openai_model)


@backoff.on_exception(
    backoff.expo,
    httpx.HTTPStatusError,
    max_tries=3,
    max_time=60,
    giveup=_give_up_http,
)
async def _post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
) -> Any:
    response = await client.post(url, json=payload, headers=headers, params=params)
    response.raise_for_status()
    return response.json()


def _gemini_text(data: Any) -> str:
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not candidates:
        raise ValueError("response contained no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


async def gemini_summary(
    title: str | None,
    text: str,
    settings: Settings,
    timeout: float = 60.0,
    client: httpx.AsyncClient | None = None,
) -> SummaryResult:
    """Structured summary from the Gemini generateContent API."""
    if not settings.gemini_api_key:
        raise ConfigMissing("GEMINI_API_KEY")

    url = f"{settings.gemini_api_url.rstrip('/')}/models/{settings.gemini_model}:generateContent"
    payload = {
        "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
        "contents": [{"role": "user", "parts": [{"text": build_prompt(title, text)}]}],
        "generationConfig": {"responseMimeType": "application/json", "temperature": 0.2},
    }
    params = {"key": settings.gemini_api_key}

    if client is not None:
        data = await _post_json(client, url, payload, params=params)
    else:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            data = await _post_json(owned, url, payload, params=params)

    output = parse_llm_output(_gemini_text(data))
    return _to_result(output, title, SummarizerOption.GEMINI, settings.gemini_model)


def _huggingface_text(data: Any) -> str:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if isinstance(data, dict):
        if data.get("error"):
            raise ValueError(str(data["error"]))
        summary = data.get("summary_text") or data.get("generated_text")
        if isinstance(summary, str):
            return summary.strip()
    return ""


async def huggingface_summary(
    title: str | None,
    text: str,
    settings: Settings,
    timeout: float = 60.0,
    client: httpx.AsyncClient | None = None,
) -> SummaryResult:
    """
    Free-text summary from a Hugging Face summarization model.

    The first two sentences become Impact, the rest Mitigations.
    """
    if not settings.huggingface_api_key:
        raise ConfigMissing("HUGGINGFACE_API_KEY")

    url = f"{settings.huggingface_api_url.rstrip('/')}/{settings.huggingface_model}"
    headers = {"Authorization": f"Bearer {settings.huggingface_api_key}"}
    payload = {
        "inputs": text[:HUGGINGFACE_TEXT_LIMIT],
        "options": {"wait_for_model": True},
    }

    if client is not None:
        data = await _post_json(client, url, payload, headers=headers)
    else:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            data = await _post_json(owned, url, payload, headers=headers)

    summary = _huggingface_text(data)
    if not summary:
        raise ValueError("response had no summary text")

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(summary) if s.strip()]
    summary_md = render_summary_md(sentences[:2], [" ".join(sentences[2:])] if sentences[2:] else [])

    return SummaryResult(
        tl_dr=_clip_tl_dr((title or "").strip() or sentences[0]),
        summary_md=summary_md,
        citations=[],
        provider=SummarizerOption.HUGGINGFACE.value,
        model=settings.huggingface_model,
    )


ProviderFn = Callable[..., Awaitable[SummaryResult]]

PROVIDERS: dict[SummarizerOption, ProviderFn] = {
    SummarizerOption.RULE_BASED: rule_based_summary,
    SummarizerOption.OPENAI: openai_summary,
    SummarizerOption.HUGGINGFACE: huggingface_summary,
    SummarizerOption.GEMINI: gemini_summary,
}


async def summarize(
    title: str | None,
    text: str,
    option: SummarizerOption,
    settings: Settings,
    timeout: float = 60.0,
    fallback_to_rule_based: bool = False,
) -> SummaryResult:
    """
    Run one provider.

    Any failure is raised as ProviderFailed naming the provider. With
    ``fallback_to_rule_based`` set, a failed external provider is replaced
    by the rule-based template and ``fallback_from`` records which one failed.

    Raises:
        ProviderFailed: the provider raised or returned empty output
    """
    provider = PROVIDERS[option]

    try:
        result = await provider(title, text, settings, timeout)
        if not result.summary_md.strip():
            raise ValueError("returned empty output")
    except Exception as e:
        error = e if isinstance(e, ProviderFailed) else ProviderFailed(
            option.value, str(e) or type(e).__name__
        )
        logger.bind(provider=option.value, error=error.reason).warning("summarizer_failed")

        if not fallback_to_rule_based or option is SummarizerOption.RULE_BASED:
            if error is e:
                raise
            raise error from e

        result = await rule_based_summary(title, text)
        result.fallback_from = option.value
        logger.bind(provider=option.value).info("summarizer_fell_back_to_rule_based")
        return result

    logger.bind(provider=option.value, model=result.model).debug("summary_generated")
    return result
