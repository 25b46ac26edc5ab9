from __future__ import annotations

"""Spotter Network loader entry point: poll -> dedupe -> normalize -> write -> commit.

STRICT:
- Only upserts into canonical_events and quarantine_records; only the loader's
  own row of ingest_checkpoints is mutated.
- Bad reports are quarantined; partial batches are never committed.
- Exit code 0 on clean shutdown, 2 on configuration errors, 3 on fatal
  pipeline errors (auth failure, fatal storage error, lost checkpoint race,
  unreadable checkpoint at startup).

Run:
  spotter-loader [--once] [--config loader.yaml] [--log-level INFO]
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Sequence

from eventstore.core.db import create_db_engine, get_database_url, make_session_factory
from spotter_ingest.core.checkpoint import CheckpointTracker, SqlCheckpointStore
from spotter_ingest.core.config import LoaderSettings, load_settings
from spotter_ingest.core.errors import CheckpointError, ConfigError, FatalPipelineError
from spotter_ingest.core.feed_fetcher import FeedFetcher
from spotter_ingest.core.logging_setup import configure_logging, log_event
from spotter_ingest.core.normalizer import Normalizer
from spotter_ingest.core.orchestrator import IngestOrchestrator
from spotter_ingest.core.quarantine import LoggingQuarantineSink, QuarantineSink, SqlQuarantineSink
from spotter_ingest.core.sink_writer import SqlEventSink


logger = logging.getLogger("spotter_ingest.loader")

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_FATAL = 3


def build_orchestrator(settings: LoaderSettings, session_factory) -> IngestOrchestrator:
    fetcher = FeedFetcher(
        settings.feed_url,
        user_agent=settings.user_agent,
        request_timeout_seconds=settings.request_timeout_seconds,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
        min_request_interval_seconds=settings.min_request_interval_seconds,
        retry_policy=settings.fetch_retry,
    )
    tracker = CheckpointTracker(
        SqlCheckpointStore(session_factory),
        settings.loader_name,
        window_size=settings.dedup_window_size,
        reorder_tolerance=settings.reorder_tolerance,
    )
    quarantine_sink: QuarantineSink
    if settings.quarantine_mode == "log":
        quarantine_sink = LoggingQuarantineSink()
    else:
        quarantine_sink = SqlQuarantineSink(session_factory)

    return IngestOrchestrator(
        fetcher=fetcher,
        tracker=tracker,
        normalizer=Normalizer(),
        sink=SqlEventSink(session_factory),
        quarantine_sink=quarantine_sink,
        poll_interval_seconds=settings.poll_interval_seconds,
        write_retry_policy=settings.write_retry,
        loader_name=settings.loader_name,
    )


def _install_signal_handlers(orchestrator: IngestOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_shutdown)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt.
            pass


async def run(orchestrator: IngestOrchestrator, *, once: bool) -> None:
    _install_signal_handlers(orchestrator)
    try:
        await orchestrator.start()
        await orchestrator.run_forever(max_cycles=1 if once else None)
    finally:
        await orchestrator.close()


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll the Spotter Network feed into the central event store.")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with loader settings.")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level.upper())

    try:
        settings = load_settings(args.config)
        database_url = settings.database_url or get_database_url()
    except (ConfigError, RuntimeError) as e:
        log_event(logger, "loader_config_error", level=logging.ERROR, error=str(e))
        return EXIT_CONFIG

    log_event(
        logger,
        "loader_initializing",
        config=settings.model_dump(mode="json", exclude={"database_url"}),
    )

    engine = create_db_engine(database_url)
    try:
        orchestrator = build_orchestrator(settings, make_session_factory(engine))
        asyncio.run(run(orchestrator, once=args.once))
    except (FatalPipelineError, CheckpointError) as e:
        # CheckpointError here means the checkpoint could not be read at startup.
        log_event(logger, "loader_fatal", level=logging.ERROR, error=str(e))
        return EXIT_FATAL
    finally:
        engine.dispose()

    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
