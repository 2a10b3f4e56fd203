"""Client configuration for lifesync.

Settings are loaded from, in increasing priority:
1. ~/.lifesync/config.json
2. Environment variables (LIFESYNC_*)
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 5 * 1024 * 1024

# env var -> (field name, converter)
_ENV_OVERRIDES = {
    "LIFESYNC_BACKEND_URL": ("backend_url", str),
    "LIFESYNC_AUTH_TOKEN": ("auth_token", str),
    "LIFESYNC_DB_PATH": ("db_path", Path),
    "LIFESYNC_FALLBACK_PATH": ("fallback_path", Path),
    "LIFESYNC_DEBOUNCE_SECONDS": ("debounce_seconds", float),
    "LIFESYNC_SYNC_INTERVAL_SECONDS": ("sync_interval_seconds", float),
    "LIFESYNC_CALL_TIMEOUT_SECONDS": ("call_timeout_seconds", float),
    "LIFESYNC_MAX_PAYLOAD_BYTES": ("max_payload_bytes", int),
    "LIFESYNC_DEVICE_ID": ("device_id", str),
}


def get_lifesync_home() -> Path:
    """Directory holding the local database and config (LIFESYNC_HOME or ~/.lifesync)."""
    override = os.environ.get("LIFESYNC_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".lifesync"


@dataclass
class SyncConfig:
    """Tunables for the local store, sync engine and backups."""

    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    db_path: Optional[Path] = None
    fallback_path: Optional[Path] = None

    debounce_seconds: float = 2.0
    sync_interval_seconds: float = 5 * 60
    call_timeout_seconds: float = 15.0
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    max_conflict_retries: int = 3

    # Exponential backoff for retryable failures
    retry_base_seconds: float = 5.0
    retry_factor: float = 2.0
    retry_max_seconds: float = 5 * 60

    backup_interval_seconds: float = 24 * 60 * 60
    backup_keep_count: int = 7

    # Local per-record version history
    device_id: str = "local"
    history_enabled: bool = True
    history_limit: int = 50

    def resolved_db_path(self) -> Path:
        return self.db_path or get_lifesync_home() / "lifesync.db"

    def resolved_fallback_path(self) -> Path:
        return self.fallback_path or get_lifesync_home() / "lifesync-fallback.json"


def _coerce(config: SyncConfig, values: Dict[str, Any]) -> SyncConfig:
    known = {f.name for f in fields(SyncConfig)}
    updates = {}
    for key, value in values.items():
        if key not in known:
            logger.debug(f"Ignoring unknown config key: {key}")
            continue
        if key in ("db_path", "fallback_path") and value is not None:
            value = Path(value).expanduser()
        updates[key] = value
    return replace(config, **updates)


def load_config(path: Optional[Path] = None) -> SyncConfig:
    """Load SyncConfig from the config file, then apply environment overrides."""
    config = SyncConfig()

    config_path = path or get_lifesync_home() / "config.json"
    if config_path.exists():
        try:
            with open(config_path) as f:
                config = _coerce(config, json.load(f))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read {config_path}: {e}")

    env_values = {}
    for env_name, (field_name, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            env_values[field_name] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {env_name}={raw!r}")
    config = replace(config, **env_values)

    if config.backend_url:
        config.backend_url = config.backend_url.rstrip("/")
    return config
