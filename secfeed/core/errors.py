"""Error taxonomy for ingestion and summarization.

Batch operations catch these per seed, item or incident and keep going.
Single-entity operations let them propagate to the caller, whose message
is meant to be shown to an operator as-is.
"""


class SecfeedError(Exception):
    """Base class for all expected pipeline failures."""


class ConfigMissing(SecfeedError):
    """A required key or secret is not configured."""

    def __init__(self, name: str, detail: str | None = None) -> None:
        self.name = name
        super().__init__(detail or f"{name} is not configured")


class FetchFailed(SecfeedError):
    """Network failure or timeout while retrieving a seed."""


class ParseFailed(SecfeedError):
    """A structured payload (JSON, CSV, XML) could not be parsed."""


class NotFound(SecfeedError):
    """The requested incident or summary run does not exist."""


class NoSourceMaterial(SecfeedError):
    """The incident has no linked raw document."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "No source material found for this incident. Try running the crawl pipeline first."
        )


class EmptySource(SecfeedError):
    """The linked raw document has neither body text nor title."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Source document is empty. Re-run the crawl pipeline or verify the raw item contents."
        )


class ProviderFailed(SecfeedError):
    """A summarization provider could not produce a result."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.reason = message
        super().__init__(f"{provider} summarizer failed: {message}")
