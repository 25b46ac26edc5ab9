"""`.env` support for the loader, migrations and ops scripts.

Process environment always wins: values from files only fill in variables
that are not set yet, unless the caller asks to override.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

_QUOTES = ("'", '"')


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1]
    return value


def read_env_file(path: Path) -> dict[str, str]:
    """KEY=value pairs of one env file; comments, blanks and junk lines are ignored."""
    pairs: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        key, sep, value = line.partition("=")
        key = key.strip()
        if line.startswith("#") or not sep or not key:
            continue
        pairs[key] = _unquote(value.strip())
    return pairs


def default_env_candidates() -> list[Path]:
    # backend/eventstore/core/env.py: parents[3] is the repository root.
    repo_root = Path(__file__).resolve().parents[3]
    return [repo_root / ".env", repo_root / "backend" / ".env"]


def load_env_if_present(
    *,
    override: bool = False,
    candidates: Optional[Iterable[Path]] = None,
) -> list[Path]:
    """Apply every readable env file in order; returns the files that were applied."""
    applied: list[Path] = []
    for path in candidates if candidates is not None else default_env_candidates():
        if not path.is_file():
            continue
        try:
            pairs = read_env_file(path)
        except (OSError, UnicodeDecodeError):
            continue
        for key, value in pairs.items():
            if override or key not in os.environ:
                os.environ[key] = value
        applied.append(path)
    return applied
