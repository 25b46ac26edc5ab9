"""
Ingestion orchestrator for the Spotter Network loader.

The single authority that drives the poll cycle:

    Idle -> Fetching -> Deduping -> Normalizing -> Writing
         -> CommittingCheckpoint -> Idle

plus Retrying (transient write failures) and Fatal.

Guarantees:
- The checkpoint is committed only after the event store acknowledged the batch.
- A failed cycle leaves the cursor untouched; the next cycle re-fetches and
  re-writes idempotently.
- Conditional-fetch validators are kept only for committed cycles, so a
  failed batch is never hidden behind a 304.
- Auth failures, fatal storage errors and lost checkpoint races stop the loader.
- The next poll never starts while the previous write/commit is in flight.
- Shutdown is honored only between cycles, never mid-write.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from spotter_ingest.core.checkpoint import AnyReport, CheckpointTracker, Cursor
from spotter_ingest.core.errors import (
    AuthFailureError,
    CheckpointConflictError,
    CheckpointPersistError,
    FatalPipelineError,
    FatalWriteError,
    FetchError,
    QuarantineSinkError,
    TransientWriteError,
    WriteError,
)
from spotter_ingest.core.feed_fetcher import FeedFetcher
from spotter_ingest.core.logging_setup import log_event
from spotter_ingest.core.normalizer import Normalizer
from spotter_ingest.core.quarantine import QuarantineSink
from spotter_ingest.core.reports import CanonicalEvent, QuarantineRecord
from spotter_ingest.core.retry import RetryPolicy, retry_async
from spotter_ingest.core.sink_writer import EventSink, WriteAck

logger = logging.getLogger(__name__)

_FATAL_ERRORS = (AuthFailureError, FatalWriteError, CheckpointConflictError)


class CycleStage(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DEDUPING = "deduping"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    RETRYING = "retrying"
    COMMITTING_CHECKPOINT = "committing_checkpoint"
    FATAL = "fatal"


@dataclass
class CycleReport:
    """Outcome of one poll cycle."""
    cycle: int
    fetched: int = 0
    admitted: int = 0
    stored: int = 0
    already_present: int = 0
    quarantined: int = 0
    committed: bool = False
    cursor: Optional[Cursor] = None
    failed_stage: Optional[CycleStage] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_stage is None


class IngestOrchestrator:
    """Runs poll -> dedupe -> normalize -> write -> commit cycles."""

    def __init__(
        self,
        *,
        fetcher: FeedFetcher,
        tracker: CheckpointTracker,
        normalizer: Normalizer,
        sink: EventSink,
        quarantine_sink: QuarantineSink,
        poll_interval_seconds: float = 60.0,
        write_retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        loader_name: str = "sn_loader",
    ) -> None:
        self._fetcher = fetcher
        self._tracker = tracker
        self._normalizer = normalizer
        self._sink = sink
        self._quarantine_sink = quarantine_sink
        self._poll_interval = max(0.0, poll_interval_seconds)
        self._write_retry_policy = write_retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._loader_name = loader_name

        self._stage = CycleStage.IDLE
        self._cycle = 0
        self._started = False
        self._reload_checkpoint = False
        self._shutdown = asyncio.Event()

    @property
    def stage(self) -> CycleStage:
        return self._stage

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Cooperative stop; takes effect at the next cycle boundary."""
        if not self._shutdown.is_set():
            log_event(logger, "shutdown_requested", loader=self._loader_name, stage=self._stage.value)
        self._shutdown.set()

    async def start(self) -> None:
        """Load the checkpoint. Must run before the first cycle."""
        await asyncio.to_thread(self._tracker.load)
        self._started = True
        log_event(logger, "loader_started", loader=self._loader_name)

    async def close(self) -> None:
        """Release network resources. The checkpoint is already durable."""
        await self._fetcher.close()
        cursor = self._tracker.cursor
        log_event(
            logger,
            "loader_stopped",
            loader=self._loader_name,
            cycles=self._cycle,
            cursor_ts=cursor.report_ts.isoformat() if cursor else None,
            cursor_id=cursor.report_id if cursor else None,
        )

    async def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """Fixed-interval poll loop until shutdown, `max_cycles`, or a fatal error.

        Raises:
            FatalPipelineError: the pipeline reached the Fatal state.
        """
        if not self._started:
            await self.start()
        completed = 0
        while not self._shutdown.is_set():
            await self.run_cycle()
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            await self._wait_for_next_poll()

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle. Non-fatal failures are reported, not raised.

        Raises:
            FatalPipelineError: auth failure, fatal write error or lost checkpoint race.
        """
        if self._stage is CycleStage.FATAL:
            raise FatalPipelineError("Loader is in the Fatal state; restart required.")
        if not self._started:
            await self.start()

        self._cycle += 1
        report = CycleReport(cycle=self._cycle)
        try:
            if self._reload_checkpoint:
                await asyncio.to_thread(self._tracker.load)
                self._reload_checkpoint = False

            self._enter(CycleStage.FETCHING)
            fetched = await self._fetcher.poll(self._tracker.cursor)
            report.fetched = len(fetched)

            self._enter(CycleStage.DEDUPING)
            admitted = self._tracker.filter(fetched)
            report.admitted = len(admitted)
            if not admitted:
                self._fetcher.confirm_poll()
                report.cursor = self._tracker.cursor
                return self._finish(report)

            self._enter(CycleStage.NORMALIZING)
            events, quarantined = self._normalize(admitted)
            report.quarantined = len(quarantined)
            await self._forward_quarantine(quarantined)

            self._enter(CycleStage.WRITING)
            ack = await self._write(events)
            report.stored = ack.inserted
            report.already_present = ack.already_present

            self._enter(CycleStage.COMMITTING_CHECKPOINT)
            await self._commit(admitted)
            self._fetcher.confirm_poll()
            report.committed = True
            report.cursor = self._tracker.cursor
            return self._finish(report)

        except _FATAL_ERRORS as e:
            report.failed_stage = self._stage
            report.error = f"{type(e).__name__}: {e}"
            self._fetcher.discard_poll()
            self._enter(CycleStage.FATAL)
            self._log_cycle(report, level=logging.ERROR)
            raise FatalPipelineError(f"Fatal failure while {report.failed_stage.value}: {e}") from e

        except CheckpointPersistError as e:
            # Durable state unknown; re-read it before trusting the in-memory version again.
            self._reload_checkpoint = True
            return self._fail(report, e)

        except (FetchError, WriteError) as e:
            return self._fail(report, e)

    def _normalize(self, admitted: Sequence[AnyReport]) -> tuple[list[CanonicalEvent], list[QuarantineRecord]]:
        events: list[CanonicalEvent] = []
        quarantined: list[QuarantineRecord] = []
        for raw in admitted:
            outcome = self._normalizer.normalize(raw)
            if isinstance(outcome, QuarantineRecord):
                quarantined.append(outcome)
            else:
                events.append(outcome)
        return events, quarantined

    async def _forward_quarantine(self, records: list[QuarantineRecord]) -> None:
        if not records:
            return
        try:
            await asyncio.to_thread(self._quarantine_sink.submit, records)
        except QuarantineSinkError as e:
            # Fire-and-forget: never blocks or fails the cycle.
            log_event(
                logger,
                "quarantine_sink_failed",
                level=logging.ERROR,
                loader=self._loader_name,
                count=len(records),
                report_ids=[r.report_id for r in records],
                error=str(e),
            )

    async def _write(self, events: list[CanonicalEvent]) -> WriteAck:
        async def attempt() -> WriteAck:
            self._enter(CycleStage.WRITING)
            return await asyncio.to_thread(self._sink.write, events)

        return await retry_async(
            attempt,
            policy=self._write_retry_policy,
            retry_on=(TransientWriteError,),
            description="event_write",
            sleep=self._sleep,
            rng=self._rng,
            on_retry=lambda attempt_no, error, delay: self._enter(CycleStage.RETRYING),
        )

    async def _commit(self, admitted: Sequence[AnyReport]) -> None:
        pending = self._tracker.plan_commit(admitted)
        await asyncio.to_thread(self._tracker.commit, pending)

    async def _wait_for_next_poll(self) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    def _enter(self, stage: CycleStage) -> None:
        if stage is not self._stage:
            logger.debug("cycle %s: %s -> %s", self._cycle, self._stage.value, stage.value)
        self._stage = stage

    def _finish(self, report: CycleReport) -> CycleReport:
        self._enter(CycleStage.IDLE)
        self._log_cycle(report)
        return report

    def _fail(self, report: CycleReport, error: Exception) -> CycleReport:
        # The next cycle must re-fetch this batch in full, not get a 304.
        self._fetcher.discard_poll()
        report.failed_stage = self._stage
        report.error = f"{type(error).__name__}: {error}"
        report.cursor = self._tracker.cursor
        self._enter(CycleStage.IDLE)
        self._log_cycle(report, level=logging.WARNING)
        return report

    def _log_cycle(self, report: CycleReport, *, level: int = logging.INFO) -> None:
        log_event(
            logger,
            "ingestion_cycle_summary",
            level=level,
            loader=self._loader_name,
            cycle=report.cycle,
            fetched_count=report.fetched,
            admitted_count=report.admitted,
            inserted_count=report.stored,
            deduplicated_count=report.already_present,
            quarantined_count=report.quarantined,
            committed=report.committed,
            cursor_ts=report.cursor.report_ts.isoformat() if report.cursor else None,
            cursor_id=report.cursor.report_id if report.cursor else None,
            failed_stage=report.failed_stage.value if report.failed_stage else None,
            error=report.error,
        )
