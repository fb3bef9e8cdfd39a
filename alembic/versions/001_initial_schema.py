"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Raw documents, unique by content fingerprint
    op.create_table(
        "raw_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("source", sa.String(255), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        sa.Column("title", sa.String(1000), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_raw_items_url", "raw_items", ["url"])
    op.create_index("ix_raw_items_content_hash", "raw_items", ["content_hash"], unique=True)

    # Incidents, unique by canonical key
    op.create_table(
        "incidents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("canonical_key", sa.String(255), nullable=False),
        sa.Column("title", sa.String(1000), nullable=False),
        sa.Column("kev", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cvss_base", sa.Float(), nullable=True),
        sa.Column("last_summarized_at", sa.DateTime(), nullable=True),
        sa.Column("last_summary_provider", sa.String(32), nullable=True),
        sa.Column("last_summary_model", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_incidents_canonical_key", "incidents", ["canonical_key"], unique=True)
    op.create_index("ix_incidents_updated_at", "incidents", ["updated_at"])

    # Incident <-> raw document links
    op.create_table(
        "incident_sources",
        sa.Column(
            "incident_id",
            sa.Uuid(),
            sa.ForeignKey("incidents.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "raw_id",
            sa.Uuid(),
            sa.ForeignKey("raw_items.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_incident_sources_created_at", "incident_sources", ["created_at"])

    # Summary run history
    op.create_table(
        "summaries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "incident_id",
            sa.Uuid(),
            sa.ForeignKey("incidents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tl_dr", sa.String(500), nullable=False),
        sa.Column("summary_md", sa.Text(), nullable=False),
        sa.Column("citations", sa.JSON(), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("model", sa.String(255), nullable=True),
        sa.Column("fallback_from", sa.String(32), nullable=True),
        sa.Column("ran_at", sa.DateTime(), nullable=False),
        sa.Column("triggered_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_summaries_incident_id", "summaries", ["incident_id"])
    op.create_index("ix_summaries_ran_at", "summaries", ["ran_at"])

    # Key/value settings (default summarizer provider)
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_index("ix_summaries_ran_at", table_name="summaries")
    op.drop_index("ix_summaries_incident_id", table_name="summaries")
    op.drop_table("summaries")
    op.drop_index("ix_incident_sources_created_at", table_name="incident_sources")
    op.drop_table("incident_sources")
    op.drop_index("ix_incidents_updated_at", table_name="incidents")
    op.drop_index("ix_incidents_canonical_key", table_name="incidents")
    op.drop_table("incidents")
    op.drop_index("ix_raw_items_content_hash", table_name="raw_items")
    op.drop_index("ix_raw_items_url", table_name="raw_items")
    op.drop_table("raw_items")
