from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from secfeed.core.datetime_utils import utc_now


class IngestItem(BaseModel):
    """Normalized advisory record from any feed or scrape."""

    url: str
    title: str | None = None
    content: str | None = None
    fetched_at: datetime = Field(default_factory=utc_now)
    published_at: datetime | None = None
    source: str = "web"  # seed host name for structured feeds, "web" for scrapes
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def fingerprint_text(self) -> str:
        """Text the content fingerprint is computed over."""
        return f"{self.title or ''}\n{self.content or ''}"
