"""Upgrade the event store schema to the latest Alembic revision (no downgrade).

Usage:
  python backend/scripts/migrate_upgrade_head.py

Reads DATABASE_URL from the environment or `.env` / `backend/.env`.
"""

from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config

from eventstore.core.env import load_env_if_present


BACKEND_DIR = Path(__file__).resolve().parents[1]


def main() -> int:
    load_env_if_present()
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("Missing DATABASE_URL (set env var or create .env).")
        return 2

    cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)

    print("Upgrading event store to head...")
    command.upgrade(cfg, "head")
    print("PASS: upgraded to head.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
