import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from secfeed.core.datetime_utils import utc_now
from secfeed.models.base import Base


class SummaryRun(Base):
    """One immutable summarization attempt for an incident."""

    __tablename__ = "summaries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), index=True
    )
    tl_dr: Mapped[str] = mapped_column(String(500))
    summary_md: Mapped[str] = mapped_column(Text)
    citations_json: Mapped[list] = mapped_column("citations", JSON, default=list)
    provider: Mapped[str] = mapped_column(String(32))
    model: Mapped[str | None] = mapped_column(String(255))
    fallback_from: Mapped[str | None] = mapped_column(String(32))
    ran_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)
    triggered_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    incident: Mapped["Incident"] = relationship(back_populates="summaries")

    def __repr__(self) -> str:
        return f"<SummaryRun {self.provider} @ {self.ran_at}>"


# Forward reference for Incident
from secfeed.models.incident import Incident  # noqa: E402, F401
