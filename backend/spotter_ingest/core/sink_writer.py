"""
Sink writer: idempotent, batch-atomic delivery of canonical events.

Write contract:
- Upsert by event id: re-writing an already persisted event is a no-op success,
  so retrying after a partial failure or a crash is always safe.
- Batch-atomic: one transaction per batch. Either every event is visible or
  none is, and the caller retries the whole batch. Large batches are sent as
  several statements inside that one transaction.
- `WriteAck` is the only signal allowed to trigger a checkpoint commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker

from eventstore.core.db import INSERT_CHUNK_SIZE, chunked, insert_ignoring_conflicts
from eventstore.models.canonical_event import CanonicalEventRow
from spotter_ingest.core.errors import FatalWriteError, TransientWriteError, WriteConflictError
from spotter_ingest.core.logging_setup import log_event
from spotter_ingest.core.reports import CanonicalEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WriteAck:
    """Durable acknowledgment of a whole batch."""
    batch_size: int
    inserted: int
    already_present: int


class EventSink(Protocol):
    def write(self, events: Sequence[CanonicalEvent]) -> WriteAck:
        ...


def event_to_row(event: CanonicalEvent) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "source": event.source,
        "report_id": event.report_id,
        "reporter": event.reporter,
        "event_type": event.event_type.value,
        "title": event.title,
        "text": event.text,
        "latitude": event.location.lat,
        "longitude": event.location.lon,
        "magnitude": event.magnitude,
        "units": event.units.value if event.units else None,
        "was_measured": event.was_measured,
        "event_ts": event.event_ts,
        "raw_payload": event.raw_payload,
    }


class SqlEventSink:
    """Writes canonical events into the `canonical_events` table."""

    def __init__(self, session_factory: sessionmaker[Session], *, chunk_size: int = INSERT_CHUNK_SIZE) -> None:
        self._session_factory = session_factory
        self._chunk_size = chunk_size

    def write(self, events: Sequence[CanonicalEvent]) -> WriteAck:
        # Identical content in one batch collapses to one row.
        unique: dict[Any, CanonicalEvent] = {}
        for event in events:
            unique.setdefault(event.event_id, event)

        if not unique:
            return WriteAck(batch_size=len(events), inserted=0, already_present=0)

        table = CanonicalEventRow.__table__
        try:
            with self._session_factory() as session, session.begin():
                dialect_name = session.get_bind().dialect.name
                existing: set[Any] = set()
                for ids in chunked(list(unique), self._chunk_size):
                    existing.update(
                        session.execute(
                            select(CanonicalEventRow.event_id).where(CanonicalEventRow.event_id.in_(ids))
                        ).scalars()
                    )
                rows = [event_to_row(e) for event_id, e in unique.items() if event_id not in existing]
                for chunk in chunked(rows, self._chunk_size):
                    session.execute(
                        insert_ignoring_conflicts(dialect_name, table, chunk, index_elements=["event_id"])
                    )
        except IntegrityError as e:
            raise WriteConflictError(f"Event batch rejected by a storage constraint: {e.orig}") from e
        except (OperationalError, DisconnectionError, PoolTimeoutError) as e:
            raise TransientWriteError(f"Event store temporarily unavailable: {e}") from e
        except NotImplementedError as e:
            raise FatalWriteError(str(e)) from e
        except SQLAlchemyError as e:
            raise FatalWriteError(f"Event store refused the batch: {e}") from e

        ack = WriteAck(
            batch_size=len(events),
            inserted=len(rows),
            already_present=len(existing) + (len(events) - len(unique)),
        )
        log_event(
            logger,
            "events_written",
            batch_size=ack.batch_size,
            inserted=ack.inserted,
            already_present=ack.already_present,
        )
        return ack
