"""Per-record version history: every local save keeps a copy of the record.

History is local to the device and never synced. Each record keeps at most
``limit`` versions (oldest dropped first); version numbers keep counting up
after old entries are dropped.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from lifesync.storage import HISTORY_PREFIX, LocalStore, history_key
from lifesync.types import utc_now

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


@dataclass
class RecordVersion:
    """One saved state of a record."""

    id: str
    collection: str
    record_id: str
    version: int
    data: Dict[str, Any]
    modified_at: str
    device_id: str
    description: Optional[str] = None
    parent_version: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RecordVersion":
        return cls(**d)


@dataclass
class VersionDiff:
    """Top-level field differences between two versions of a record."""

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    # key -> (old value, new value)
    modified: Dict[str, tuple] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def diff_versions(old: RecordVersion, new: RecordVersion) -> VersionDiff:
    diff = VersionDiff()
    for key in new.data:
        if key not in old.data:
            diff.added.append(key)
    for key in old.data:
        if key not in new.data:
            diff.removed.append(key)
    for key, value in new.data.items():
        if key in old.data and _canonical(old.data[key]) != _canonical(value):
            diff.modified[key] = (old.data[key], value)
    return diff


class RecordHistory:
    """Reads and appends record versions in the local store.

    Args:
        store: The local store (history lives under hist: keys).
        device_id: Written into every version for provenance.
        limit: Versions kept per record.
    """

    def __init__(
        self, store: LocalStore, device_id: str = "local", limit: int = DEFAULT_HISTORY_LIMIT
    ):
        if limit < 1:
            raise ValueError(f"History limit must be at least 1, got {limit}")
        self.store = store
        self.device_id = device_id
        self.limit = limit

    async def _load(self, collection: str, record_id: str) -> Dict[str, Any]:
        stored = await self.store.get(history_key(collection, record_id))
        return stored or {"current": 0, "versions": []}

    async def record(
        self,
        collection: str,
        data: Dict[str, Any],
        description: Optional[str] = None,
        parent_version: Optional[str] = None,
    ) -> RecordVersion:
        """Append data as the newest version of its record."""
        record_id = data["id"]
        entry = await self._load(collection, record_id)
        number = int(entry.get("current") or 0) + 1
        version = RecordVersion(
            id=f"{record_id}-v{number}-{uuid.uuid4().hex[:8]}",
            collection=collection,
            record_id=record_id,
            version=number,
            data=dict(data),
            modified_at=utc_now(),
            device_id=self.device_id,
            description=description,
            parent_version=parent_version,
        )
        versions = entry.get("versions", []) + [asdict(version)]
        await self.store.put(
            history_key(collection, record_id),
            {"current": number, "versions": versions[-self.limit :]},
        )
        return version

    async def versions(self, collection: str, record_id: str) -> List[RecordVersion]:
        """Versions of a record, oldest first."""
        entry = await self._load(collection, record_id)
        return [RecordVersion.from_dict(v) for v in entry.get("versions", [])]

    async def get(self, collection: str, record_id: str, version_id: str) -> Optional[RecordVersion]:
        for version in await self.versions(collection, record_id):
            if version.id == version_id:
                return version
        return None

    async def get_by_number(
        self, collection: str, record_id: str, number: int
    ) -> Optional[RecordVersion]:
        for version in await self.versions(collection, record_id):
            if version.version == number:
                return version
        return None

    async def latest_diff(self, collection: str, record_id: str) -> Optional[VersionDiff]:
        """Diff between the two newest versions, or None with fewer than two."""
        versions = await self.versions(collection, record_id)
        if len(versions) < 2:
            return None
        return diff_versions(versions[-2], versions[-1])

    async def cleanup(self) -> int:
        """Trim every record's history to the limit. Returns versions dropped."""
        dropped = 0
        updates = []
        for key, entry in await self.store.list(HISTORY_PREFIX):
            versions = entry.get("versions", [])
            if len(versions) > self.limit:
                dropped += len(versions) - self.limit
                updates.append((key, {**entry, "versions": versions[-self.limit :]}))
        if updates:
            await self.store.put_many(updates)
            logger.info(f"Trimmed {dropped} old record versions from {len(updates)} histories")
        return dropped

    async def clear(self, collection: str, record_id: str) -> None:
        await self.store.delete(history_key(collection, record_id))
