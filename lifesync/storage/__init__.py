"""lifesync storage backends.

Local-first key-value persistence: SQLite as primary, a JSON file (or
memory) as fallback, behind the async LocalStore facade.
"""

from .base import (
    DATASET_VERSION_KEY,
    HISTORY_PREFIX,
    LAST_BACKUP_KEY,
    MIGRATION_BACKUP_KEY,
    PENDING_CHANGES_KEY,
    SYNC_CURSOR_KEY,
    collection_prefix,
    history_key,
    record_key,
    split_record_key,
)
from .dataset import DatasetRepository
from .fallback import JsonFileBackend, MemoryBackend
from .local_store import LocalStore
from .sqlite import SQLiteBackend

__all__ = [
    "LocalStore",
    "DatasetRepository",
    "SQLiteBackend",
    "JsonFileBackend",
    "MemoryBackend",
    "DATASET_VERSION_KEY",
    "HISTORY_PREFIX",
    "LAST_BACKUP_KEY",
    "MIGRATION_BACKUP_KEY",
    "PENDING_CHANGES_KEY",
    "SYNC_CURSOR_KEY",
    "collection_prefix",
    "history_key",
    "record_key",
    "split_record_key",
]
