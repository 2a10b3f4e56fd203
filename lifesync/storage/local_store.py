"""Async local store with transparent primary -> fallback switching.

The store opens its primary backend lazily on first use. If that fails, it
logs once and switches to the fallback backend for the rest of the process
lifetime. If the fallback can't be opened either, every call raises
StorageUnavailable.

Backends are synchronous and local; the async methods run them inline on the
event loop, so operations issued by one task are applied in issue order.
"""

import asyncio
import logging
from typing import Any, List, Optional, Tuple

from lifesync.config import SyncConfig
from lifesync.protocols import StorageBackend, StorageError, StorageUnavailable

from .fallback import JsonFileBackend, MemoryBackend
from .sqlite import SQLiteBackend

logger = logging.getLogger(__name__)


class LocalStore:
    """Key-value persistence shared by UI reads and sync engine writes.

    Args:
        primary: Preferred backend (SQLite on device).
        fallback: Backend used if the primary can't be opened.
    """

    def __init__(self, primary: StorageBackend, fallback: Optional[StorageBackend] = None):
        self._primary = primary
        self._fallback = fallback
        self._active: Optional[StorageBackend] = None
        self._fallback_active = False
        # Serializes read-compare-write sequences (UI mutations, sync merges)
        self.lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: SyncConfig) -> "LocalStore":
        return cls(
            SQLiteBackend(config.resolved_db_path()),
            JsonFileBackend(config.resolved_fallback_path()),
        )

    @classmethod
    def in_memory(cls) -> "LocalStore":
        return cls(MemoryBackend())

    @property
    def using_fallback(self) -> bool:
        return self._fallback_active

    @property
    def backend_name(self) -> Optional[str]:
        return self._active.name if self._active else None

    def _backend(self) -> StorageBackend:
        if self._active is not None:
            return self._active

        if not self._fallback_active:
            try:
                self._primary.open()
                self._active = self._primary
                return self._active
            except Exception as e:
                self._fallback_active = True
                if self._fallback is None:
                    raise StorageUnavailable(
                        f"Primary storage '{self._primary.name}' failed to open and no fallback configured: {e}"
                    ) from e
                logger.warning(
                    f"Primary storage '{self._primary.name}' unavailable ({e}), "
                    f"falling back to '{self._fallback.name}' for this session"
                )

        if self._fallback is None:
            raise StorageUnavailable(f"Primary storage '{self._primary.name}' is unavailable")
        try:
            self._fallback.open()
        except Exception as e:
            raise StorageUnavailable(
                f"Fallback storage '{self._fallback.name}' failed to open: {e}"
            ) from e
        self._active = self._fallback
        return self._active

    def _call(self, op: str, *args):
        backend = self._backend()
        try:
            return getattr(backend, op)(*args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"{backend.name}.{op} failed: {e}") from e

    async def get(self, key: str) -> Optional[Any]:
        """Value for key, or None if absent."""
        return self._call("get", key)

    async def put(self, key: str, value: Any) -> None:
        self._call("put", key, value)

    async def put_many(self, items: List[Tuple[str, Any]]) -> None:
        """Write several keys atomically."""
        self._call("put_many", list(items))

    async def delete(self, key: str) -> None:
        self._call("delete", key)

    async def list(self, prefix: str) -> List[Tuple[str, Any]]:
        """(key, value) pairs under prefix, sorted by key."""
        return self._call("list", prefix)

    def close(self) -> None:
        if self._active is not None:
            self._active.close()
