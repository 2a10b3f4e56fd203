"""
Shared sync types for lifesync.

These dataclasses are the vocabulary between the local store, the sync
engine, the remote store client and the backup manager. Records themselves
stay plain JSON-compatible dicts in the client's camelCase shape; only the
containers around them are typed.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string. Naive values are assumed to be UTC."""
    if not s:
        return None
    if isinstance(s, datetime):
        dt = s
    else:
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def payload_size(data: Any) -> int:
    """Serialized JSON size in bytes, as measured by the push guard."""
    return len(json.dumps(data, separators=(",", ":"), default=str).encode("utf-8"))


# === Enums ===


class SyncState(str, Enum):
    """Sync engine state."""

    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


class SyncFailureReason(str, Enum):
    """Why the last sync cycle failed (the `reason` of the error state)."""

    OFFLINE = "offline"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class TriggerSource(str, Enum):
    """What started a sync cycle."""

    DEBOUNCE = "debounce"
    ONLINE = "online"
    MANUAL = "manual"
    PERIODIC = "periodic"
    RETRY = "retry"
    STARTUP = "startup"


# === Containers ===


@dataclass
class Dataset:
    """A user's full set of records, keyed by local collection name."""

    collections: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    version: str = "1.0.0"
    updated_at: Optional[str] = None

    def records(self, collection: str) -> List[Dict[str, Any]]:
        return self.collections.get(collection, [])

    def record_count(self) -> int:
        return sum(len(items) for items in self.collections.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collections": self.collections,
            "version": self.version,
            "updated_at": self.updated_at,
        }


@dataclass
class RemoteDataset:
    """A dataset in the remote store's row shape, as sent over the wire."""

    data: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    version: str = "1.0.0"
    revision: int = 0
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class BackupSnapshot:
    """An immutable full export of a dataset."""

    id: str
    owner_id: str
    version: str
    created_at: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class User:
    """Identity yielded by the session collaborator."""

    id: str
    email: Optional[str] = None


@dataclass
class SyncCursor:
    """Bookmark of the last successful sync."""

    revision: int = 0
    synced_at: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.synced_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {"revision": self.revision, "synced_at": self.synced_at}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncCursor":
        if not data:
            return cls()
        return cls(revision=int(data.get("revision", 0)), synced_at=data.get("synced_at"))


@dataclass
class SyncStatus:
    """Snapshot of the engine's state, published to subscribers."""

    state: SyncState = SyncState.IDLE
    reason: Optional[SyncFailureReason] = None
    message: Optional[str] = None
    pending: bool = False
    last_synced_at: Optional[str] = None
    next_retry_at: Optional[str] = None
    retry_attempt: int = 0

    @property
    def is_online(self) -> bool:
        return self.state != SyncState.OFFLINE


@dataclass
class SyncResult:
    """Result of one sync cycle."""

    pushed: bool = False
    pulled: int = 0  # Remote winners written locally
    local_wins: int = 0  # Records where local beat remote
    conflicts_retried: int = 0  # Push conflicts handled by re-pulling
    revision: Optional[int] = None
    skipped: Optional[str] = None  # Why the cycle did nothing (guest, ...)
    reason: Optional[SyncFailureReason] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.reason is None and len(self.errors) == 0
