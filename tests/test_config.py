"""Tests for client configuration loading."""

import json
from pathlib import Path

from lifesync.config import SyncConfig, get_lifesync_home, load_config


def test_defaults(tmp_path):
    config = load_config(tmp_path / "missing.json")

    assert config.debounce_seconds == 2.0
    assert config.sync_interval_seconds == 300
    assert config.call_timeout_seconds == 15.0
    assert config.max_payload_bytes == 5 * 1024 * 1024
    assert config.backup_keep_count == 7
    assert config.backend_url is None


def test_home_override(monkeypatch, tmp_path):
    monkeypatch.setenv("LIFESYNC_HOME", str(tmp_path))

    assert get_lifesync_home() == tmp_path
    assert SyncConfig().resolved_db_path() == tmp_path / "lifesync.db"


def test_file_values(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "backend_url": "https://api.example.com/",
                "debounce_seconds": 5,
                "db_path": "~/data/lifesync.db",
                "unknown_key": True,
            }
        )
    )

    config = load_config(path)

    assert config.backend_url == "https://api.example.com"
    assert config.debounce_seconds == 5
    assert config.db_path == Path("~/data/lifesync.db").expanduser()


def test_environment_beats_file(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"debounce_seconds": 5}))
    monkeypatch.setenv("LIFESYNC_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("LIFESYNC_MAX_PAYLOAD_BYTES", "not-a-number")

    config = load_config(path)

    assert config.debounce_seconds == 0.5
    assert config.max_payload_bytes == 5 * 1024 * 1024


def test_unreadable_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    config = load_config(path)

    assert config.debounce_seconds == 2.0
    assert "Could not read" in caplog.text


def test_history_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("LIFESYNC_DEVICE_ID", "laptop")

    config = load_config(tmp_path / "missing.json")

    assert config.device_id == "laptop"
    assert config.history_enabled
    assert config.history_limit == 50
