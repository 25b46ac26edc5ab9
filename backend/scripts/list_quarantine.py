"""List recently quarantined reports for manual inspection."""

import argparse
import json

from sqlalchemy import select

from eventstore.core.db import create_db_engine, make_session_factory
from eventstore.models.quarantine_record import QuarantineRecordRow


def list_quarantine(limit: int, reason: str | None, show_payload: bool) -> None:
    engine = create_db_engine()
    SessionLocal = make_session_factory(engine)
    try:
        with SessionLocal() as db:
            stmt = select(QuarantineRecordRow).order_by(QuarantineRecordRow.created_at.desc()).limit(limit)
            if reason:
                stmt = stmt.where(QuarantineRecordRow.reason == reason)
            rows = db.execute(stmt).scalars().all()
            print(f"Found {len(rows)} quarantined reports.")
            for row in rows:
                print(f"- {row.created_at} [{row.source}] {row.reason}: {row.detail} (report {row.report_id[:16]})")
                if show_payload:
                    print("  " + json.dumps(row.raw_payload, ensure_ascii=False))
    finally:
        engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--reason", choices=["unknown_type", "missing_field", "out_of_range"], default=None)
    parser.add_argument("--payload", action="store_true", help="Also print the raw payload echo.")
    args = parser.parse_args()
    list_quarantine(args.limit, args.reason, args.payload)
