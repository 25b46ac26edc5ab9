from __future__ import annotations

"""Structured logging for the loader.

One JSON object per line, `{"event": <name>, ...fields}`. Never log raw report
text; ids and hashes are safe for ops/audit.
"""

import json
import logging
from typing import Any

ROOT_LOGGER_NAME = "spotter_ingest"


def configure_logging(level: str | int = "INFO") -> None:
    """Ensure logs are visible when run from a scheduler or console."""
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    logger.log(level, json.dumps({"event": event, **fields}, ensure_ascii=False, default=str))
