"""In-memory collaborators for tests and multi-device simulations.

InMemoryRemoteStore follows the same contract as the HTTP backend:
a per-owner revision counter, content-hash idempotence, the payload
ceiling, and backups ordered by creation. Failures can be injected per
operation.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
from collections import defaultdict
from typing import Any, Dict, List, Optional

from lifesync.config import DEFAULT_MAX_PAYLOAD_BYTES
from lifesync.protocols import ConflictError, PayloadTooLargeError
from lifesync.types import BackupSnapshot, RemoteDataset, User, payload_size, utc_now


def content_hash(data: Dict[str, Any], version: str) -> str:
    canonical = json.dumps({"data": data, "version": version}, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class InMemoryRemoteStore:
    """RemoteStore kept in process memory."""

    def __init__(self, max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES):
        self.max_payload_bytes = max_payload_bytes
        self._datasets: Dict[str, Dict[str, Any]] = {}
        self._backups: Dict[str, List[BackupSnapshot]] = defaultdict(list)
        self._failures: Dict[str, List[BaseException]] = defaultdict(list)
        self.calls: List[str] = []
        self.healthy = True
        self.delay = 0.0

    # === Test controls ===

    def fail(self, operation: str, error: BaseException, times: int = 1) -> None:
        """Make the next `times` calls to operation raise error."""
        self._failures[operation].extend([error] * times)

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    def revision(self, owner_id: str) -> int:
        stored = self._datasets.get(owner_id)
        return stored["revision"] if stored else 0

    def stored_rows(self, owner_id: str, table: str) -> List[Dict[str, Any]]:
        stored = self._datasets.get(owner_id)
        return copy.deepcopy(stored["data"].get(table, [])) if stored else []

    def backups_for(self, owner_id: str) -> List[BackupSnapshot]:
        return list(self._backups[owner_id])

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    # === RemoteStore ===

    async def fetch_dataset(self, owner_id: str) -> Optional[RemoteDataset]:
        await self._enter("fetch_dataset")
        stored = self._datasets.get(owner_id)
        if stored is None:
            return None
        return RemoteDataset(
            data=copy.deepcopy(stored["data"]),
            version=stored["version"],
            revision=stored["revision"],
            updated_at=stored["updated_at"],
        )

    async def push_dataset(
        self, owner_id: str, dataset: RemoteDataset, expected_revision: int
    ) -> int:
        await self._enter("push_dataset")
        size = payload_size(dataset.data)
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(size, self.max_payload_bytes)

        digest = content_hash(dataset.data, dataset.version)
        stored = self._datasets.get(owner_id)
        current = stored["revision"] if stored else 0
        if stored is not None and stored["hash"] == digest:
            return current
        if expected_revision != current:
            raise ConflictError(
                f"Expected revision {expected_revision}, remote is at {current}",
                current_revision=current,
            )

        self._datasets[owner_id] = {
            "data": copy.deepcopy(dataset.data),
            "version": dataset.version,
            "revision": current + 1,
            "updated_at": utc_now(),
            "hash": digest,
        }
        return current + 1

    async def fetch_latest_backup(self, owner_id: str) -> Optional[BackupSnapshot]:
        await self._enter("fetch_latest_backup")
        backups = self._backups[owner_id]
        return backups[-1] if backups else None

    async def create_backup(self, owner_id: str, snapshot: BackupSnapshot) -> None:
        await self._enter("create_backup")
        # Kept in creation order; snapshots are frozen so sharing is safe
        self._backups[owner_id].append(
            BackupSnapshot(
                id=snapshot.id,
                owner_id=owner_id,
                version=snapshot.version,
                created_at=snapshot.created_at,
                data=copy.deepcopy(snapshot.data),
            )
        )

    async def prune_backups(self, owner_id: str, keep_count: int) -> int:
        await self._enter("prune_backups")
        backups = self._backups[owner_id]
        excess = max(len(backups) - max(keep_count, 0), 0)
        del backups[:excess]
        return excess

    async def health_check(self) -> bool:
        await self._enter("health_check")
        return self.healthy


class StaticSession:
    """SessionProvider with a settable user (None = guest)."""

    def __init__(self, user: Optional[User] = None):
        self.user = user

    def current_user(self) -> Optional[User]:
        return self.user

    def sign_in(self, user: User) -> None:
        self.user = user

    def sign_out(self) -> None:
        self.user = None
