"""lifesync sync: mapping, change tracking, conflict resolution, the engine."""

from .backoff import Backoff
from .backup import BackupManager
from .change_tracker import ChangeTracker
from .conflict import Resolution, resolve, resolve_record
from .engine import SyncEngine
from .history import RecordHistory, RecordVersion, VersionDiff, diff_versions
from .field_mapper import (
    COLLECTION_MAPPINGS,
    DATASET_COLLECTIONS,
    SINGLETON_COLLECTIONS,
    SINGLETON_RECORD_ID,
    CollectionMapping,
    FieldMapper,
    camel_to_snake,
    snake_to_camel,
)
from .scheduler import Debouncer, ScheduledTask
from .versioning import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    compare_versions,
    stamp_record,
    upgrade,
)

__all__ = [
    "Backoff",
    "BackupManager",
    "ChangeTracker",
    "Resolution",
    "resolve",
    "resolve_record",
    "SyncEngine",
    "RecordHistory",
    "RecordVersion",
    "VersionDiff",
    "diff_versions",
    "COLLECTION_MAPPINGS",
    "DATASET_COLLECTIONS",
    "CollectionMapping",
    "FieldMapper",
    "camel_to_snake",
    "snake_to_camel",
    "SINGLETON_COLLECTIONS",
    "SINGLETON_RECORD_ID",
    "Debouncer",
    "ScheduledTask",
    "CURRENT_SCHEMA_VERSION",
    "MIGRATIONS",
    "compare_versions",
    "stamp_record",
    "upgrade",
]
