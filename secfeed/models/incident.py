import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Float, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from secfeed.core.datetime_utils import utc_now
from secfeed.models.base import Base


class RawDocument(Base):
    """An ingested advisory document, unique by content fingerprint."""

    __tablename__ = "raw_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    url: Mapped[str] = mapped_column(String(2048), index=True)
    source: Mapped[str] = mapped_column(String(255), default="web")
    fetched_at: Mapped[datetime] = mapped_column(default=utc_now)
    title: Mapped[str | None] = mapped_column(String(1000))
    body_text: Mapped[str | None] = mapped_column(Text)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    incident_links: Mapped[list["IncidentSource"]] = relationship(back_populates="raw_item")

    def __repr__(self) -> str:
        return f"<RawDocument {self.content_hash}: {(self.title or self.url)[:50]}>"


class Incident(Base):
    """One real-world security issue, unique by canonical key."""

    __tablename__ = "incidents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    canonical_key: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(1000), default="")
    kev: Mapped[bool] = mapped_column(Boolean, default=False)
    cvss_base: Mapped[float | None] = mapped_column(Float)

    # Projection of the most recent summary run
    last_summarized_at: Mapped[datetime | None] = mapped_column(default=None)
    last_summary_provider: Mapped[str | None] = mapped_column(String(32), default=None)
    last_summary_model: Mapped[str | None] = mapped_column(String(255), default=None)

    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)

    sources: Mapped[list["IncidentSource"]] = relationship(
        back_populates="incident", cascade="all, delete-orphan"
    )
    summaries: Mapped[list["SummaryRun"]] = relationship(
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by="SummaryRun.ran_at.desc()",
    )

    def __repr__(self) -> str:
        return f"<Incident {self.canonical_key}>"


class IncidentSource(Base):
    """Link between an incident and one of its raw documents."""

    __tablename__ = "incident_sources"

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), primary_key=True
    )
    raw_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("raw_items.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)

    incident: Mapped["Incident"] = relationship(back_populates="sources")
    raw_item: Mapped["RawDocument"] = relationship(back_populates="incident_links")

    def __repr__(self) -> str:
        return f"<IncidentSource incident={self.incident_id} raw={self.raw_id}>"


# Forward reference for SummaryRun
from secfeed.models.summary import SummaryRun  # noqa: E402, F401
