"""Field mapping between the client's record shape and the remote row shape.

Local records use camelCase field names; remote rows use snake_case plus an
injected ``user_id`` owner column. Some collections carry local-only fields
(denormalized arrays, embedded entries) that never leave the device, and a
few remote columns kept their old names after a local rename.

The mapping table is static and exhaustive: every collection the client
knows about must have an entry, checked when the mapper is built.
"""

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from lifesync.types import Dataset, RemoteDataset

logger = logging.getLogger(__name__)

OWNER_COLUMN = "user_id"
# Local field that would collide with the injected owner column
LOCAL_OWNER_FIELD = "userId"

# Record id of the single record in a singleton collection (stats, health profile)
SINGLETON_RECORD_ID = "current"

_UPPER = re.compile(r"[A-Z]")


def camel_to_snake(name: str) -> str:
    """xpToNext -> xp_to_next. Leading underscores are preserved."""
    stripped = name.lstrip("_")
    lead = name[: len(name) - len(stripped)]
    return lead + _UPPER.sub(lambda m: "_" + m.group(0).lower(), stripped)


def snake_to_camel(name: str) -> str:
    """xp_to_next -> xpToNext. Inverse of camel_to_snake for camelCase input."""
    stripped = name.lstrip("_")
    lead = name[: len(name) - len(stripped)]
    head, *rest = stripped.split("_")
    return lead + head + "".join(part[:1].upper() + part[1:] for part in rest)


@dataclass(frozen=True)
class CollectionMapping:
    """How one collection translates to its remote table.

    Attributes:
        remote_table: Remote table name (default: snake_case of the collection).
        exclude: Local-only camelCase fields; dropped outbound, never rebuilt inbound.
        overrides: snake_case local name -> remote column, where the default
            conversion doesn't match the remote schema.
        singleton: The collection holds one record per user, stored under
            SINGLETON_RECORD_ID.
    """

    remote_table: Optional[str] = None
    exclude: FrozenSet[str] = frozenset()
    overrides: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    singleton: bool = False


def _mapping(
    remote_table: Optional[str] = None,
    exclude: Iterable[str] = (),
    overrides: Optional[Dict[str, str]] = None,
    singleton: bool = False,
) -> CollectionMapping:
    return CollectionMapping(
        remote_table=remote_table,
        exclude=frozenset(exclude),
        overrides=MappingProxyType(dict(overrides or {})),
        singleton=singleton,
    )


COLLECTION_MAPPINGS: Mapping[str, CollectionMapping] = MappingProxyType(
    {
        "areas": _mapping(remote_table="life_areas"),
        "values": _mapping(remote_table="core_values"),
        "roles": _mapping(exclude=["areaId"]),
        "goals": _mapping(exclude=["relatedRoles"]),
        "projects": _mapping(),
        # Task.projectId -> tasks.goal_id (remote schema predates the rename)
        "tasks": _mapping(overrides={"project_id": "goal_id"}),
        "habits": _mapping(exclude=["entries"]),
        "challenges": _mapping(),
        "skills": _mapping(exclude=["activities", "certificates", "decayLogs"]),
        "journal": _mapping(),
        "dailyReviews": _mapping(),
        "weeklyReviews": _mapping(),
        "rewards": _mapping(),
        "wishes": _mapping(),
        "achievements": _mapping(),
        "accounts": _mapping(),
        "transactions": _mapping(),
        "financialGoals": _mapping(),
        "budgets": _mapping(),
        "bodyZones": _mapping(),
        "medicalDocuments": _mapping(),
        "healthMetrics": _mapping(),
        "healthProfile": _mapping(remote_table="health_profiles", singleton=True),
        "stats": _mapping(remote_table="user_stats", singleton=True),
    }
)

# Every collection a dataset may contain
DATASET_COLLECTIONS = tuple(COLLECTION_MAPPINGS.keys())
SINGLETON_COLLECTIONS = tuple(c for c, m in COLLECTION_MAPPINGS.items() if m.singleton)


class FieldMapper:
    """Bidirectional record translation, validated against the collection list.

    Args:
        collections: Collections the client uses; each must have a mapping.
        mappings: The mapping table (defaults to COLLECTION_MAPPINGS).

    Raises:
        ValueError: if a collection has no mapping or a mapping is inconsistent.
    """

    def __init__(
        self,
        collections: Iterable[str] = DATASET_COLLECTIONS,
        mappings: Mapping[str, CollectionMapping] = COLLECTION_MAPPINGS,
    ):
        self.collections = tuple(collections)
        missing = [c for c in self.collections if c not in mappings]
        if missing:
            raise ValueError(f"No field mapping configured for collections: {', '.join(missing)}")

        self._mappings: Dict[str, CollectionMapping] = {c: mappings[c] for c in self.collections}
        self._reverse_overrides: Dict[str, Dict[str, str]] = {}
        self._table_to_collection: Dict[str, str] = {}

        for collection, mapping in self._mappings.items():
            reverse = {remote: local for local, remote in mapping.overrides.items()}
            if len(reverse) != len(mapping.overrides):
                raise ValueError(f"Field overrides for {collection} map two fields to one column")
            self._reverse_overrides[collection] = reverse

            table = self.remote_table(collection)
            if table in self._table_to_collection:
                raise ValueError(
                    f"Collections {self._table_to_collection[table]} and {collection} "
                    f"both map to remote table {table}"
                )
            self._table_to_collection[table] = collection

    def _get(self, collection: str) -> CollectionMapping:
        try:
            return self._mappings[collection]
        except KeyError:
            raise KeyError(f"Unknown collection: {collection}") from None

    def remote_table(self, collection: str) -> str:
        return self._get(collection).remote_table or camel_to_snake(collection)

    def collection_for_table(self, table: str) -> str:
        try:
            return self._table_to_collection[table]
        except KeyError:
            raise KeyError(f"Unknown remote table: {table}") from None

    def excluded_fields(self, collection: str) -> FrozenSet[str]:
        return self._get(collection).exclude

    def is_singleton(self, collection: str) -> bool:
        return self._get(collection).singleton

    def to_remote(self, collection: str, record: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
        """Local record -> remote row, with the owner injected."""
        mapping = self._get(collection)
        row: Dict[str, Any] = {OWNER_COLUMN: owner_id}
        for key, value in record.items():
            if key == "id":
                row["id"] = value
                continue
            if key == LOCAL_OWNER_FIELD or key in mapping.exclude:
                continue
            snake = camel_to_snake(key)
            row[mapping.overrides.get(snake, snake)] = value
        return row

    def to_local(self, collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Remote row -> local record. Excluded fields are never reconstructed."""
        mapping = self._get(collection)
        reverse = self._reverse_overrides[collection]
        record: Dict[str, Any] = {}
        for key, value in row.items():
            if key == OWNER_COLUMN:
                continue
            if key == "id":
                record["id"] = value
                continue
            local = snake_to_camel(reverse.get(key, key))
            if local in mapping.exclude:
                continue
            record[local] = value
        return record

    def dataset_to_remote(self, dataset: Dataset, owner_id: str, revision: int = 0) -> RemoteDataset:
        data = {}
        for collection, records in dataset.collections.items():
            table = self.remote_table(collection)
            data[table] = [self.to_remote(collection, r, owner_id) for r in records]
        return RemoteDataset(
            data=data,
            version=dataset.version,
            revision=revision,
            updated_at=dataset.updated_at,
        )

    def dataset_from_remote(self, remote: RemoteDataset) -> Dataset:
        collections = {}
        for table, rows in remote.data.items():
            try:
                collection = self.collection_for_table(table)
            except KeyError:
                logger.warning(f"Ignoring unknown remote table {table} ({len(rows)} rows)")
                continue
            collections[collection] = [self.to_local(collection, row) for row in rows]
        return Dataset(
            collections=collections,
            version=remote.version,
            updated_at=remote.updated_at,
        )
