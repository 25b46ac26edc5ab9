"""Event store baseline: canonical events, quarantine records, ingest checkpoints."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision = "0001_event_store"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "canonical_events",
        sa.Column("event_id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("report_id", sa.Text(), nullable=False),
        sa.Column("reporter", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("magnitude", sa.Float(), nullable=True),
        sa.Column("units", sa.String(length=16), nullable=True),
        sa.Column("was_measured", sa.Boolean(), nullable=True),
        sa.Column("event_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_payload", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_canonical_events_event_ts", "canonical_events", ["event_ts"])
    op.create_index("ix_canonical_events_source_event_ts", "canonical_events", ["source", "event_ts"])

    op.create_table(
        "quarantine_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("report_id", sa.Text(), nullable=False),
        sa.Column("report_kind", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("detail", sa.Text(), nullable=False),
        sa.Column("raw_payload", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("source", "report_id", name="ux_quarantine_records_source_report_id"),
    )

    op.create_table(
        "ingest_checkpoints",
        sa.Column("loader_name", sa.String(length=64), primary_key=True),
        sa.Column("cursor_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cursor_id", sa.Text(), nullable=True),
        sa.Column("recent_ids", _json(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("ingest_checkpoints")
    op.drop_table("quarantine_records")
    op.drop_index("ix_canonical_events_source_event_ts", table_name="canonical_events")
    op.drop_index("ix_canonical_events_event_ts", table_name="canonical_events")
    op.drop_table("canonical_events")
