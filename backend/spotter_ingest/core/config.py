from __future__ import annotations

"""Loader configuration.

Precedence (lowest to highest):
- model defaults,
- optional YAML file (`SN_LOADER_CONFIG` or an explicit path),
- environment variables (`SN_*`, `DATABASE_URL`), after `.env` files are loaded.

Tunables have no upstream-mandated values; defaults follow the feed's own
refresh cadence (one poll per minute) and a conservative request rate.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eventstore.core.env import load_env_if_present
from spotter_ingest.core.errors import ConfigError
from spotter_ingest.core.feed_fetcher import DEFAULT_USER_AGENT, MIN_INTERVAL_SECONDS
from spotter_ingest.core.retry import RetryPolicy


CONFIG_PATH_ENV = "SN_LOADER_CONFIG"

# env var -> settings field
_ENV_FIELDS: dict[str, str] = {
    "DATABASE_URL": "database_url",
    "SN_LOADER_NAME": "loader_name",
    "SN_FEED_URL": "feed_url",
    "SN_USER_AGENT": "user_agent",
    "SN_POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "SN_MIN_REQUEST_INTERVAL_SECONDS": "min_request_interval_seconds",
    "SN_REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "SN_PAGE_SIZE": "page_size",
    "SN_MAX_PAGES": "max_pages",
    "SN_DEDUP_WINDOW_SIZE": "dedup_window_size",
    "SN_REORDER_TOLERANCE_SECONDS": "reorder_tolerance_seconds",
    "SN_QUARANTINE_MODE": "quarantine_mode",
}


class LoaderSettings(BaseModel):
    """All tunables of the Spotter Network loader."""
    loader_name: str = "sn_loader"
    feed_url: str = "http://www.spotternetwork.org/feeds/reports.txt"
    user_agent: str = DEFAULT_USER_AGENT
    database_url: Optional[str] = None

    poll_interval_seconds: float = Field(default=60.0, ge=0.0)
    min_request_interval_seconds: float = Field(default=MIN_INTERVAL_SECONDS, ge=0.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    page_size: int = Field(default=500, ge=1)
    max_pages: int = Field(default=20, ge=1)

    dedup_window_size: int = Field(default=4096, ge=1)
    # The feed re-lists reports for hours and spotters submit late; look back
    # this far behind the cursor and let the recent-id window drop repeats.
    reorder_tolerance_seconds: float = Field(default=1800.0, ge=0.0)

    fetch_retry: RetryPolicy = Field(default_factory=lambda: RetryPolicy(max_attempts=4, base_delay_seconds=2.0))
    write_retry: RetryPolicy = Field(default_factory=lambda: RetryPolicy(max_attempts=5, base_delay_seconds=0.5))

    quarantine_mode: Literal["database", "log"] = "database"

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def reorder_tolerance(self) -> timedelta:
        return timedelta(seconds=self.reorder_tolerance_seconds)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read loader config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in loader config {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid loader config {path}: expected a top-level mapping.")
    # Accept either a flat mapping or one nested under `loader:`.
    section = raw.get("loader", raw)
    if not isinstance(section, dict):
        raise ConfigError(f"Invalid loader config {path}: 'loader' must be a mapping.")
    return dict(section)


def load_settings(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    load_dotenv: bool = True,
) -> LoaderSettings:
    """Build settings from defaults, YAML file and environment.

    Raises:
        ConfigError: unreadable file or invalid values.
    """
    if load_dotenv and environ is None:
        load_env_if_present()
    env = os.environ if environ is None else environ

    values: dict[str, Any] = {}
    config_path = path or (Path(env[CONFIG_PATH_ENV]) if env.get(CONFIG_PATH_ENV) else None)
    if config_path is not None:
        values.update(_read_yaml(config_path))

    for env_name, field_name in _ENV_FIELDS.items():
        value = env.get(env_name)
        if value is not None and value.strip() != "":
            values[field_name] = value.strip()

    try:
        return LoaderSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid loader configuration: {e}") from e
