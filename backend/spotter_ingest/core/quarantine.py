from __future__ import annotations

"""Quarantine sinks.

Quarantined reports are preserved for manual inspection, never dropped. From the
pipeline's point of view a sink is fire-and-forget: failures surface as
QuarantineSinkError, which the orchestrator logs without failing the cycle.
"""

import logging
from typing import Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eventstore.core.db import chunked, insert_ignoring_conflicts
from eventstore.models.quarantine_record import QuarantineRecordRow
from spotter_ingest.core.errors import QuarantineSinkError
from spotter_ingest.core.logging_setup import log_event
from spotter_ingest.core.reports import QuarantineRecord

logger = logging.getLogger(__name__)


class QuarantineSink(Protocol):
    def submit(self, records: Sequence[QuarantineRecord]) -> None:
        ...


class LoggingQuarantineSink:
    """Emits one structured warning per quarantined report."""

    def submit(self, records: Sequence[QuarantineRecord]) -> None:
        for record in records:
            log_event(
                logger,
                "report_quarantined",
                level=logging.WARNING,
                source=record.source,
                report_id=record.report_id,
                report_kind=record.report_kind,
                reason=record.reason.value,
                detail=record.detail,
            )


class SqlQuarantineSink:
    """Stores quarantined reports in `quarantine_records`, one row per report."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def submit(self, records: Sequence[QuarantineRecord]) -> None:
        if not records:
            return
        rows = [
            {
                "source": r.source,
                "report_id": r.report_id,
                "report_kind": r.report_kind,
                "reason": r.reason.value,
                "detail": r.detail,
                "raw_payload": r.raw_payload,
            }
            for r in records
        ]
        try:
            with self._session_factory() as session, session.begin():
                dialect_name = session.get_bind().dialect.name
                for chunk in chunked(rows):
                    session.execute(
                        insert_ignoring_conflicts(
                            dialect_name,
                            QuarantineRecordRow.__table__,
                            chunk,
                            index_elements=["source", "report_id"],
                        )
                    )
        except (SQLAlchemyError, NotImplementedError) as e:
            raise QuarantineSinkError(f"Failed to store {len(rows)} quarantine records: {e}") from e

        log_event(logger, "reports_quarantined", count=len(rows))
