from __future__ import annotations

from sqlalchemy import Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from eventstore.core.base import Base, CreatedAtMixin, JSONPayload


class QuarantineRecordRow(CreatedAtMixin, Base):
    """Reports that failed normalization, retained for manual inspection.

    One row per (source, report_id): quarantining the same report again is a no-op,
    so a report re-delivered by the feed is never retried indefinitely.
    """

    __tablename__ = "quarantine_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    report_id: Mapped[str] = mapped_column(Text, nullable=False)
    report_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False)
    raw_payload: Mapped[dict] = mapped_column(JSONPayload, nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "report_id", name="ux_quarantine_records_source_report_id"),
    )
