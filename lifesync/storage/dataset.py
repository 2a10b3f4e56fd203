"""Dataset repository: records and dataset metadata on top of LocalStore."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from lifesync.types import Dataset

from .base import (
    DATASET_UPDATED_AT_KEY,
    DATASET_VERSION_KEY,
    collection_prefix,
    record_key,
    split_record_key,
)
from .local_store import LocalStore

logger = logging.getLogger(__name__)


class DatasetRepository:
    """Reads and writes records (one key per record) and the dataset version."""

    def __init__(self, store: LocalStore):
        self.store = store

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(record_key(collection, record_id))

    async def put_record(self, collection: str, record: Dict[str, Any]) -> None:
        await self.store.put(record_key(collection, record["id"]), record)

    async def delete_record(self, collection: str, record_id: str) -> None:
        """Remove a record outright. Synced deletions use tombstones instead."""
        await self.store.delete(record_key(collection, record_id))

    async def put_records(self, items: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        """Write many records in one atomic batch."""
        await self.store.put_many(
            [(record_key(collection, record["id"]), record) for collection, record in items]
        )

    async def list_records(
        self, collection: str, include_deleted: bool = False
    ) -> List[Dict[str, Any]]:
        rows = await self.store.list(collection_prefix(collection))
        records = [value for _, value in rows]
        if not include_deleted:
            records = [r for r in records if not r.get("deleted")]
        return records

    async def get_version(self) -> Optional[str]:
        return await self.store.get(DATASET_VERSION_KEY)

    async def set_version(self, version: str) -> None:
        await self.store.put(DATASET_VERSION_KEY, version)

    async def has_records(self) -> bool:
        return bool(await self.store.list(collection_prefix()))

    async def read_dataset(self, default_version: str = "1.0.0") -> Dataset:
        """Snapshot of every record (tombstones included) plus metadata."""
        collections: Dict[str, List[Dict[str, Any]]] = {}
        for key, value in await self.store.list(collection_prefix()):
            collection, _ = split_record_key(key)
            collections.setdefault(collection, []).append(value)

        return Dataset(
            collections=collections,
            version=await self.get_version() or default_version,
            updated_at=await self.store.get(DATASET_UPDATED_AT_KEY),
        )

    async def write_dataset(self, dataset: Dataset) -> None:
        """Write all records and the dataset metadata in one atomic batch.

        The version key is part of the same batch, so a failed write leaves
        the stored version untouched.
        """
        items: List[Tuple[str, Any]] = []
        for collection, records in dataset.collections.items():
            for record in records:
                items.append((record_key(collection, record["id"]), record))
        items.append((DATASET_VERSION_KEY, dataset.version))
        if dataset.updated_at:
            items.append((DATASET_UPDATED_AT_KEY, dataset.updated_at))
        await self.store.put_many(items)
        logger.debug(f"Wrote dataset v{dataset.version} ({dataset.record_count()} records)")

    async def touch(self, updated_at: str) -> None:
        await self.store.put(DATASET_UPDATED_AT_KEY, updated_at)
