"""Tests for summarization providers and dispatch."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from secfeed.core.errors import ConfigMissing, ProviderFailed
from secfeed.summarize.options import SummarizerOption, is_summarizer_option, summarizer_label
from secfeed.summarize.providers import (
    PROVIDERS,
    gemini_summary,
    huggingface_summary,
    openai_summary,
    parse_llm_output,
    rule_based_summary,
    summarize,
)

pytestmark = pytest.mark.asyncio

ADVISORY = """Fortinet FortiOS contains an out-of-bound write vulnerability.

Upgrade to FortiOS 7.4.3 or later.
See https://fortiguard.com/psirt/FG-IR-24-015
"""

LLM_REPLY = {
    "tl_dr": "FortiOS out-of-bound write exploited; upgrade to 7.4.3.",
    "summary_md": "## Impact\n- RCE\n\n## Mitigations\n- Upgrade\n\n## References\n- FG-IR-24-015",
    "citations": [{"url": "https://fortiguard.com/psirt/FG-IR-24-015", "label": "Fortinet PSIRT"}],
}


def _openai_client(content: str) -> MagicMock:
    client = MagicMock()
    message = MagicMock(content=content)
    response = MagicMock(choices=[MagicMock(message=message)], usage=None)
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


def _httpx_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRuleBased:
    """Tests for the template provider."""

    async def test_template_from_first_two_lines(self):
        result = await rule_based_summary("FortiOS RCE", ADVISORY)

        assert result.tl_dr == "FortiOS RCE"
        assert result.provider == "rule_based"
        assert result.model is None
        assert result.summary_md == (
            "## Impact\n"
            "- Fortinet FortiOS contains an out-of-bound write vulnerability.\n"
            "\n"
            "## Mitigations\n"
            "- Upgrade to FortiOS 7.4.3 or later.\n"
            "\n"
            "## References\n"
            "- (ref:source)"
        )

    async def test_tl_dr_from_first_line_truncated(self):
        long_line = "x" * 300
        result = await rule_based_summary(None, f"\n\n{long_line}\nsecond")

        assert result.tl_dr == "x" * 140

    async def test_empty_sections(self):
        result = await rule_based_summary("Only a title", "single line")

        assert "## Mitigations\n-\n" in result.summary_md


class TestOpenAI:
    """Tests for the OpenAI provider."""

    async def test_parses_json_reply(self, test_settings):
        client = _openai_client(json.dumps(LLM_REPLY))

        result = await openai_summary("FortiOS RCE", ADVISORY, test_settings, client=client)

        assert result.provider == "openai"
        assert result.model == test_settings.openai_model
        assert result.citations[0].label == "Fortinet PSIRT"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    async def test_body_capped(self, test_settings):
        client = _openai_client(json.dumps(LLM_REPLY))

        await openai_summary("t", "a" * 10000, test_settings, client=client)

        prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert "a" * 6000 in prompt
        assert "a" * 6001 not in prompt

    async def test_long_tl_dr_is_clipped(self, test_settings):
        client = _openai_client(json.dumps({**LLM_REPLY, "tl_dr": "y" * 200}))

        result = await openai_summary("t", ADVISORY, test_settings, client=client)

        assert len(result.tl_dr) == 140

    async def test_missing_key(self, test_settings):
        test_settings.openai_api_key = ""
        with pytest.raises(ConfigMissing, match="OPENAI_API_KEY"):
            await openai_summary("t", ADVISORY, test_settings)

    async def test_unparseable_reply(self, test_settings):
        client = _openai_client("not json")
        with pytest.raises(ValueError):
            await openai_summary("t", ADVISORY, test_settings, client=client)

    async def test_empty_summary_is_failure(self, test_settings):
        client = _openai_client(json.dumps({"tl_dr": "x", "summary_md": "  "}))
        with pytest.raises(ValueError, match="returned empty output"):
            await openai_summary("t", ADVISORY, test_settings, client=client)


class TestGemini:
    """Tests for the Gemini provider."""

    async def test_fenced_json_reply(self, test_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            text = "```json\n" + json.dumps(LLM_REPLY) + "\n```"
            return httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
            )

        async with _httpx_client(handler) as client:
            result = await gemini_summary("FortiOS RCE", ADVISORY, test_settings, client=client)

        assert result.provider == "gemini"
        assert result.tl_dr == LLM_REPLY["tl_dr"]
        assert ":generateContent" in seen["url"]
        assert "key=test-key" in seen["url"]
        assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"

    async def test_http_error(self, test_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "API key not valid"}})

        async with _httpx_client(handler) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await gemini_summary("t", ADVISORY, test_settings, client=client)

    async def test_no_candidates(self, test_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"candidates": []})

        async with _httpx_client(handler) as client:
            with pytest.raises(ValueError, match="no candidates"):
                await gemini_summary("t", ADVISORY, test_settings, client=client)

    async def test_missing_key(self, test_settings):
        test_settings.gemini_api_key = ""
        with pytest.raises(ConfigMissing, match="GEMINI_API_KEY"):
            await gemini_summary("t", ADVISORY, test_settings)


class TestHuggingFace:
    """Tests for the Hugging Face provider."""

    async def test_sentences_fill_template(self, test_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            summary = "FortiOS has a write flaw. It is exploited. Upgrade now. Restrict access."
            return httpx.Response(200, json=[{"summary_text": summary}])

        async with _httpx_client(handler) as client:
            result = await huggingface_summary(None, "b" * 9000, test_settings, client=client)

        assert len(seen["body"]["inputs"]) == 5000
        assert seen["auth"] == "Bearer test-key"
        assert result.provider == "huggingface"
        assert result.model == test_settings.huggingface_model
        assert result.tl_dr == "FortiOS has a write flaw."
        assert "## Impact\n- FortiOS has a write flaw.\n- It is exploited." in result.summary_md
        assert "## Mitigations\n- Upgrade now. Restrict access." in result.summary_md

    async def test_no_summary_text(self, test_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{}])

        async with _httpx_client(handler) as client:
            with pytest.raises(ValueError, match="no summary text"):
                await huggingface_summary("t", ADVISORY, test_settings, client=client)

    async def test_missing_key(self, test_settings):
        test_settings.huggingface_api_key = ""
        with pytest.raises(ConfigMissing, match="HUGGINGFACE_API_KEY"):
            await huggingface_summary("t", ADVISORY, test_settings)


class TestSummarizeDispatch:
    """Tests for tag dispatch and failure wrapping."""

    async def test_every_option_has_a_provider(self):
        assert set(PROVIDERS) == set(SummarizerOption)

    async def test_failure_is_not_replaced_by_rule_based(self, test_settings):
        """A failing provider fails the call, naming the provider."""
        failing = AsyncMock(side_effect=RuntimeError("connection reset"))

        with patch.dict(PROVIDERS, {SummarizerOption.OPENAI: failing}):
            with pytest.raises(ProviderFailed) as exc_info:
                await summarize("t", ADVISORY, SummarizerOption.OPENAI, test_settings)

        assert "openai" in str(exc_info.value)
        assert "connection reset" in str(exc_info.value)
        assert exc_info.value.provider == "openai"

    async def test_missing_key_named_failure(self, test_settings):
        test_settings.gemini_api_key = ""

        with pytest.raises(ProviderFailed, match="gemini summarizer failed: GEMINI_API_KEY"):
            await summarize("t", ADVISORY, SummarizerOption.GEMINI, test_settings)

    async def test_empty_output_is_failure(self, test_settings):
        empty = AsyncMock(
            return_value=(await rule_based_summary("t", ADVISORY)).model_copy(
                update={"summary_md": "", "provider": "huggingface"}
            )
        )

        with patch.dict(PROVIDERS, {SummarizerOption.HUGGINGFACE: empty}):
            with pytest.raises(ProviderFailed, match="returned empty output"):
                await summarize("t", ADVISORY, SummarizerOption.HUGGINGFACE, test_settings)

    async def test_opt_in_fallback_records_origin(self, test_settings):
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        with patch.dict(PROVIDERS, {SummarizerOption.OPENAI: failing}):
            result = await summarize(
                "FortiOS RCE",
                ADVISORY,
                SummarizerOption.OPENAI,
                test_settings,
                fallback_to_rule_based=True,
            )

        assert result.provider == "rule_based"
        assert result.fallback_from == "openai"


class TestHelpers:
    """Tests for option metadata and reply parsing."""

    async def test_option_helpers(self):
        assert is_summarizer_option("gemini")
        assert not is_summarizer_option("claude")
        assert not is_summarizer_option(None)
        assert summarizer_label(SummarizerOption.RULE_BASED) == "Rule-based (default)"
        assert summarizer_label("openai") == "OpenAI API"
        assert summarizer_label(None) == "Unknown"

    async def test_parse_llm_output_missing_key(self):
        with pytest.raises(ValueError):
            parse_llm_output('{"summary_md": "x"}')
