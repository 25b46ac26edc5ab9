"""
Checkpoint tracking for the Spotter Network loader.

The checkpoint is the single source of truth for resumption:
- cursor: position (report time, report id) of the newest committed report.
- recent_ids: bounded window of recently admitted ids, to absorb feed
  re-delivery with ties or out-of-order arrival.
- version: compare-and-set token guarding against concurrent writers.

Rules:
- The cursor never decreases.
- The durable record changes only through `commit`, which the orchestrator
  calls after the event store acknowledged the batch.
- In-memory state follows the durable record; a failed commit changes nothing.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eventstore.core.base import as_utc
from eventstore.models.ingest_checkpoint import IngestCheckpointRow
from spotter_ingest.core.errors import CheckpointConflictError, CheckpointPersistError
from spotter_ingest.core.logging_setup import log_event
from spotter_ingest.core.reports import JsonFeedReport, PlacefileReport, UnrecognizedReport

logger = logging.getLogger(__name__)

AnyReport = PlacefileReport | JsonFeedReport | UnrecognizedReport

DEFAULT_WINDOW_SIZE = 4096


class Cursor(BaseModel):
    """Position of a report in feed order."""
    report_ts: datetime
    report_id: str

    model_config = ConfigDict(frozen=True)

    def key(self) -> tuple[datetime, str]:
        return (self.report_ts, self.report_id)

    @classmethod
    def of(cls, report: AnyReport) -> Optional["Cursor"]:
        if report.report_ts is None:
            return None
        return cls(report_ts=report.report_ts, report_id=report.report_id)


class CheckpointRecord(BaseModel):
    """Durable checkpoint snapshot."""
    loader_name: str
    cursor: Optional[Cursor] = None
    recent_ids: tuple[str, ...] = ()
    version: int = 0  # 0 = never persisted
    last_success_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class CheckpointStore(Protocol):
    def load(self, loader_name: str) -> CheckpointRecord:
        ...

    def compare_and_set(self, expected_version: int, record: CheckpointRecord) -> CheckpointRecord:
        ...


class SqlCheckpointStore:
    """Persists checkpoints to the `ingest_checkpoints` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def load(self, loader_name: str) -> CheckpointRecord:
        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(IngestCheckpointRow).where(IngestCheckpointRow.loader_name == loader_name)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CheckpointPersistError(f"Failed to load checkpoint for {loader_name}: {e}") from e

        if row is None:
            return CheckpointRecord(loader_name=loader_name)

        cursor = None
        if row.cursor_ts is not None and row.cursor_id is not None:
            # Ensure timezone awareness
            cursor = Cursor(report_ts=as_utc(row.cursor_ts), report_id=row.cursor_id)

        return CheckpointRecord(
            loader_name=loader_name,
            cursor=cursor,
            recent_ids=tuple(str(i) for i in (row.recent_ids or [])),
            version=row.version,
            last_success_at=as_utc(row.last_success_at),
        )

    def compare_and_set(self, expected_version: int, record: CheckpointRecord) -> CheckpointRecord:
        """Write `record` only if the stored version still equals `expected_version`.

        Raises:
            CheckpointConflictError: another writer got there first.
            CheckpointPersistError: storage failure; nothing was written.
        """
        new_version = expected_version + 1
        values = {
            "cursor_ts": record.cursor.report_ts if record.cursor else None,
            "cursor_id": record.cursor.report_id if record.cursor else None,
            "recent_ids": list(record.recent_ids),
            "version": new_version,
            "last_success_at": record.last_success_at,
        }
        try:
            with self._session_factory() as session, session.begin():
                if expected_version == 0:
                    session.add(IngestCheckpointRow(loader_name=record.loader_name, **values))
                    session.flush()
                else:
                    result = session.execute(
                        update(IngestCheckpointRow)
                        .where(
                            IngestCheckpointRow.loader_name == record.loader_name,
                            IngestCheckpointRow.version == expected_version,
                        )
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise CheckpointConflictError(
                            f"Checkpoint for {record.loader_name} moved past version {expected_version}; "
                            "another loader instance is running."
                        )
        except IntegrityError as e:
            raise CheckpointConflictError(
                f"Checkpoint for {record.loader_name} was created concurrently: {e}"
            ) from e
        except SQLAlchemyError as e:
            raise CheckpointPersistError(f"Failed to persist checkpoint for {record.loader_name}: {e}") from e

        return record.model_copy(update={"version": new_version})


class CheckpointTracker:
    """Holds the cursor plus recent-id window and decides which reports are new."""

    def __init__(
        self,
        store: CheckpointStore,
        loader_name: str,
        *,
        window_size: int = DEFAULT_WINDOW_SIZE,
        reorder_tolerance: timedelta = timedelta(0),
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be positive")
        self._store = store
        self._loader_name = loader_name
        self._window_size = window_size
        self._reorder_tolerance = reorder_tolerance
        self._record = CheckpointRecord(loader_name=loader_name)
        self._recent: set[str] = set()

    @property
    def record(self) -> CheckpointRecord:
        return self._record

    @property
    def cursor(self) -> Optional[Cursor]:
        return self._record.cursor

    def load(self) -> CheckpointRecord:
        self._apply(self._store.load(self._loader_name))
        log_event(
            logger,
            "checkpoint_loaded",
            loader=self._loader_name,
            cursor_ts=self.cursor.report_ts.isoformat() if self.cursor else None,
            cursor_id=self.cursor.report_id if self.cursor else None,
            window=len(self._record.recent_ids),
            version=self._record.version,
        )
        return self._record

    def admit(self, report: AnyReport) -> bool:
        """True only for reports after the cursor and not seen in the recent window."""
        if report.report_id in self._recent:
            return False
        cursor = self._record.cursor
        if cursor is None or report.report_ts is None:
            return True
        if self._reorder_tolerance > timedelta(0):
            return report.report_ts > cursor.report_ts - self._reorder_tolerance
        return (report.report_ts, report.report_id) > cursor.key()

    def filter(self, reports: Iterable[AnyReport]) -> list[AnyReport]:
        admitted: list[AnyReport] = []
        batch_ids: set[str] = set()
        for report in reports:
            if report.report_id in batch_ids or not self.admit(report):
                continue
            batch_ids.add(report.report_id)
            admitted.append(report)
        return admitted

    def plan_commit(self, admitted: Sequence[AnyReport], *, now: Optional[datetime] = None) -> CheckpointRecord:
        """Next checkpoint after `admitted` is durably handled. Nothing is persisted."""
        cursor = self._record.cursor
        for report in admitted:
            candidate = Cursor.of(report)
            if candidate is not None and (cursor is None or candidate.key() > cursor.key()):
                cursor = candidate

        window = deque(self._record.recent_ids, maxlen=self._window_size)
        for report in admitted:
            window.append(report.report_id)

        return CheckpointRecord(
            loader_name=self._loader_name,
            cursor=cursor,
            recent_ids=tuple(window),
            version=self._record.version,
            last_success_at=now or datetime.now(timezone.utc),
        )

    def commit(self, pending: CheckpointRecord) -> CheckpointRecord:
        """Atomically persist `pending` against the version this tracker last read."""
        current = self._record.cursor
        if current is not None and (pending.cursor is None or pending.cursor.key() < current.key()):
            raise ValueError("checkpoint cursor must not move backwards")
        stored = self._store.compare_and_set(self._record.version, pending)
        self._apply(stored)
        log_event(
            logger,
            "checkpoint_committed",
            loader=self._loader_name,
            cursor_ts=stored.cursor.report_ts.isoformat() if stored.cursor else None,
            cursor_id=stored.cursor.report_id if stored.cursor else None,
            version=stored.version,
        )
        return stored

    def _apply(self, record: CheckpointRecord) -> None:
        self._record = record
        self._recent = set(record.recent_ids)
