"""Print the durable checkpoint of every loader (or one, with --loader)."""

import argparse

from sqlalchemy import select

from eventstore.core.db import create_db_engine, make_session_factory
from eventstore.models.ingest_checkpoint import IngestCheckpointRow


def inspect(loader: str | None = None) -> None:
    engine = create_db_engine()
    SessionLocal = make_session_factory(engine)
    try:
        with SessionLocal() as db:
            stmt = select(IngestCheckpointRow).order_by(IngestCheckpointRow.loader_name)
            if loader:
                stmt = stmt.where(IngestCheckpointRow.loader_name == loader)
            rows = db.execute(stmt).scalars().all()
            if not rows:
                print("No checkpoints found.")
            for row in rows:
                print(
                    f"[{row.loader_name}] cursor_ts: {row.cursor_ts}, cursor_id: {row.cursor_id}, "
                    f"window: {len(row.recent_ids or [])}, version: {row.version}, "
                    f"last_success_at: {row.last_success_at}"
                )
    finally:
        engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--loader", default=None)
    inspect(parser.parse_args().loader)
