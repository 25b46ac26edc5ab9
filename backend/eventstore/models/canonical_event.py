"""CanonicalEventRow model.

Storage rationale:
Canonical events are the normalized weather-report records shared by every
ingestion loader. Rows are append-only and keyed by a deterministic,
content-derived UUID: re-delivering the same report converges on the same row,
which is what makes loader retries and restarts safe.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from eventstore.core.base import Base, CreatedAtMixin, JSONPayload, require_utc


class CanonicalEventRow(CreatedAtMixin, Base):
    """Immutable canonical weather event."""

    __tablename__ = "canonical_events"

    event_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)

    # Attribution
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    report_id: Mapped[str] = mapped_column(Text, nullable=False)
    reporter: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification and content
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Geolocation
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    # Measurement
    magnitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    was_measured: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Temporal
    event_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Source payload echo for audit/reprocessing
    raw_payload: Mapped[dict] = mapped_column(JSONPayload, nullable=False)

    __table_args__ = (
        Index("ix_canonical_events_event_ts", "event_ts"),
        Index("ix_canonical_events_source_event_ts", "source", "event_ts"),
    )

    @validates("event_ts")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return require_utc(key, value)
