from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from eventstore.core.env import load_env_if_present, read_env_file
from spotter_ingest.core.config import CONFIG_PATH_ENV, LoaderSettings, load_settings
from spotter_ingest.core.errors import ConfigError


def test_defaults_without_config() -> None:
    settings = load_settings(environ={}, load_dotenv=False)

    assert settings == LoaderSettings()
    assert settings.feed_url == "http://www.spotternetwork.org/feeds/reports.txt"
    assert settings.poll_interval_seconds == 60.0
    assert settings.reorder_tolerance == timedelta(minutes=30)
    assert settings.quarantine_mode == "database"


def test_yaml_section_then_env_override(tmp_path: Path) -> None:
    path = tmp_path / "loader.yaml"
    path.write_text(
        "loader:\n"
        "  loader_name: sn_loader_test\n"
        "  poll_interval_seconds: 120\n"
        "  page_size: 50\n"
        "  write_retry:\n"
        "    max_attempts: 2\n"
        "    base_delay_seconds: 0.1\n",
        encoding="utf-8",
    )

    settings = load_settings(environ={CONFIG_PATH_ENV: str(path), "SN_PAGE_SIZE": "25"}, load_dotenv=False)

    assert settings.loader_name == "sn_loader_test"
    assert settings.poll_interval_seconds == 120.0
    assert settings.page_size == 25
    assert settings.write_retry.max_attempts == 2
    assert settings.fetch_retry.max_attempts == 4


def test_flat_yaml_and_explicit_path(tmp_path: Path) -> None:
    path = tmp_path / "flat.yaml"
    path.write_text("quarantine_mode: log\ndedup_window_size: 16\n", encoding="utf-8")

    settings = load_settings(path, environ={}, load_dotenv=False)

    assert settings.quarantine_mode == "log"
    assert settings.dedup_window_size == 16


def test_database_url_from_env() -> None:
    settings = load_settings(environ={"DATABASE_URL": "sqlite:///events.db"}, load_dotenv=False)

    assert settings.database_url == "sqlite:///events.db"


@pytest.mark.parametrize(
    "environ",
    [
        {"SN_PAGE_SIZE": "0"},
        {"SN_POLL_INTERVAL_SECONDS": "soon"},
        {"SN_QUARANTINE_MODE": "email"},
    ],
)
def test_invalid_values_raise_config_error(environ) -> None:
    with pytest.raises(ConfigError):
        load_settings(environ=environ, load_dotenv=False)


def test_unknown_keys_and_bad_files(tmp_path: Path) -> None:
    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("poll_every: 5\n", encoding="utf-8")
    broken = tmp_path / "broken.yaml"
    broken.write_text("loader: [1, 2\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(unknown, environ={}, load_dotenv=False)
    with pytest.raises(ConfigError):
        load_settings(broken, environ={}, load_dotenv=False)
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "absent.yaml", environ={}, load_dotenv=False)


def test_env_file_does_not_override_process_env(tmp_path: Path, monkeypatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# loader\nexport SN_LOADER_NAME='from_file'\nSN_FEED_URL=\"https://feed.example.test\"\nnot a pair\n",
        encoding="utf-8",
    )
    # Recorded so teardown removes whatever the loader sets.
    monkeypatch.setenv("SN_LOADER_NAME", "placeholder")
    monkeypatch.delenv("SN_LOADER_NAME")
    monkeypatch.setenv("SN_FEED_URL", "https://already.set.test")

    applied = load_env_if_present(candidates=[env_file, tmp_path / "missing.env"])

    assert applied == [env_file]

    assert os.environ["SN_LOADER_NAME"] == "from_file"
    assert os.environ["SN_FEED_URL"] == "https://already.set.test"


def test_read_env_file_parses_pairs(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n# comment\nDATABASE_URL = 'sqlite:///x.db'\nEMPTY=\nURL=http://a.test/?q=1\n=orphan\n",
        encoding="utf-8",
    )

    assert read_env_file(env_file) == {
        "DATABASE_URL": "sqlite:///x.db",
        "EMPTY": "",
        "URL": "http://a.test/?q=1",
    }
