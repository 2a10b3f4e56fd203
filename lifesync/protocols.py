"""
lifesync Protocol Definitions
=============================

Interface contracts between the sync core and its collaborators.

Components and their roles:
- LocalStore:   durable on-device key-value persistence (primary + fallback).
- RemoteStore:  generic record store reached over the network.
- Session:      the authentication collaborator; yields the current user.
- SyncEngine:   orchestrates push/pull between the two stores.

Error handling philosophy:
- Local storage failures raise StorageError; failure to open any backend
  raises StorageUnavailable.
- Remote failures raise a subclass of RemoteError. The sync engine turns
  them into a status (error(reason)) and never lets them escape.
- Conflict is internal to the engine: it re-pulls and retries.
- Backup failures are swallowed at the call site (best-effort).
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

from lifesync.types import BackupSnapshot, RemoteDataset, SyncFailureReason, User

# =============================================================================
# ERRORS
# =============================================================================


class LifeSyncError(Exception):
    """Base for all lifesync errors."""

    reason = SyncFailureReason.UNKNOWN


class StorageError(LifeSyncError):
    """Raised when the active local backend fails an operation."""

    reason = SyncFailureReason.STORAGE


class StorageUnavailable(StorageError):
    """Raised when neither the primary nor the fallback backend can be opened."""


class MigrationFailed(LifeSyncError):
    """Raised when a schema upgrade step fails. The dataset keeps its old version."""

    def __init__(self, version: str, cause: Exception):
        super().__init__(f"Migration {version} failed: {cause}")
        self.version = version
        self.cause = cause


class OfflineError(LifeSyncError):
    """Raised when a remote operation is requested while offline."""

    reason = SyncFailureReason.OFFLINE


class RemoteError(LifeSyncError):
    """Base for failures reported by (or about) the remote store."""

    retryable = False


class UnreachableError(RemoteError):
    """Remote could not be reached (connection refused, 5xx, rate limited)."""

    reason = SyncFailureReason.UNREACHABLE
    retryable = True


class SyncTimeoutError(UnreachableError):
    """A remote call exceeded its fixed timeout. Retried like Unreachable."""

    reason = SyncFailureReason.TIMEOUT


class UnauthorizedError(RemoteError):
    """Remote rejected the session. Needs re-authentication."""

    reason = SyncFailureReason.UNAUTHORIZED


class PayloadTooLargeError(RemoteError):
    """Serialized dataset exceeds the push ceiling."""

    reason = SyncFailureReason.PAYLOAD_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class ConflictError(RemoteError):
    """Remote revision moved since our cursor (optimistic concurrency)."""

    reason = SyncFailureReason.CONFLICT

    def __init__(self, message: str = "Remote dataset changed", current_revision: Optional[int] = None):
        super().__init__(message)
        self.current_revision = current_revision


class RemoteRejectedError(RemoteError):
    """Remote refused the payload (validation). Surfaced, not retried as-is."""

    reason = SyncFailureReason.REJECTED

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class StorageBackend(Protocol):
    """Synchronous key-value backend used by LocalStore.

    Values are JSON-compatible. Each put/delete is atomic per key.
    """

    name: str

    def open(self) -> None:
        """Open or create the underlying storage. Raises on failure."""
        ...

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def put_many(self, items: List[Tuple[str, Any]]) -> None:
        """Write several keys in one transaction."""
        ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        """All (key, value) pairs whose key starts with prefix, sorted by key."""
        ...

    def close(self) -> None: ...


@runtime_checkable
class RemoteStore(Protocol):
    """Generic remote record store, scoped by owner."""

    async def fetch_dataset(self, owner_id: str) -> Optional[RemoteDataset]:
        """Return the owner's dataset, or None if none was pushed yet."""
        ...

    async def push_dataset(
        self, owner_id: str, dataset: RemoteDataset, expected_revision: int
    ) -> int:
        """Store the dataset and return the resulting revision.

        Raises ConflictError, UnauthorizedError, UnreachableError,
        PayloadTooLargeError or RemoteRejectedError.
        """
        ...

    async def fetch_latest_backup(self, owner_id: str) -> Optional[BackupSnapshot]: ...

    async def create_backup(self, owner_id: str, snapshot: BackupSnapshot) -> None: ...

    async def prune_backups(self, owner_id: str, keep_count: int) -> int:
        """Delete all but the newest keep_count backups. Returns deleted count."""
        ...

    async def health_check(self) -> bool: ...


@runtime_checkable
class SessionProvider(Protocol):
    """The authentication collaborator."""

    def current_user(self) -> Optional[User]:
        """The signed-in user, or None for guest/local-only mode."""
        ...
