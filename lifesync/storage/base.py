"""Key layout and shared helpers for lifesync local storage backends.

Every persisted value lives under a logical key:
- rec:<collection>:<id>   one record in the client's local shape
- meta:<name>             sync bookkeeping (marker, cursor, dataset version, ...)
- hist:<collection>:<id>  local version history of one record (never synced)
"""

import json
from typing import Any, Optional, Tuple

RECORD_PREFIX = "rec:"
META_PREFIX = "meta:"
HISTORY_PREFIX = "hist:"

PENDING_CHANGES_KEY = "meta:pending_changes"
SYNC_CURSOR_KEY = "meta:sync_cursor"
DATASET_VERSION_KEY = "meta:dataset_version"
DATASET_UPDATED_AT_KEY = "meta:dataset_updated_at"
LAST_BACKUP_KEY = "meta:last_backup_at"
MIGRATION_BACKUP_KEY = "meta:migration_backup"


def record_key(collection: str, record_id: str) -> str:
    """Key for a single record."""
    if not collection or ":" in collection:
        raise ValueError(f"Invalid collection name: {collection!r}")
    if not record_id:
        raise ValueError("Record ID cannot be empty")
    return f"{RECORD_PREFIX}{collection}:{record_id}"


def history_key(collection: str, record_id: str) -> str:
    """Key for the version history of one record."""
    return HISTORY_PREFIX + record_key(collection, record_id)[len(RECORD_PREFIX) :]


def collection_prefix(collection: Optional[str] = None) -> str:
    """Prefix matching every record of a collection (or of all collections)."""
    if collection is None:
        return RECORD_PREFIX
    return f"{RECORD_PREFIX}{collection}:"


def split_record_key(key: str) -> Tuple[str, str]:
    """Inverse of record_key: returns (collection, record_id)."""
    if not key.startswith(RECORD_PREFIX):
        raise ValueError(f"Not a record key: {key!r}")
    collection, _, record_id = key[len(RECORD_PREFIX) :].partition(":")
    return collection, record_id


def to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def from_json(s: Optional[str]) -> Any:
    if s is None:
        return None
    return json.loads(s)
