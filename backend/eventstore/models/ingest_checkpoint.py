from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from eventstore.core.base import Base, JSONPayload, UpdatedAtMixin


class IngestCheckpointRow(UpdatedAtMixin, Base):
    """Durable ingestion cursor for a single loader.

    `version` is the compare-and-set token: every successful commit bumps it, and
    a writer holding a stale version must not overwrite the row. This keeps the
    cursor monotonic when two loader processes race after a restart.
    """

    __tablename__ = "ingest_checkpoints"

    loader_name: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Cursor (last committed report position)
    cursor_ts: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cursor_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bounded window of recently admitted report ids, oldest first
    recent_ids: Mapped[list] = mapped_column(JSONPayload, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_success_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
