"""
lifesync Core - offline-first data for a life-management app.

This module provides the two entry points applications use:

- LifeStore: the UI-facing facade. Reads and writes records in the local
  store instantly, stamps them, marks pending changes and notifies
  listeners. Works without any network or signed-in user.
- LifeSync: wires LifeStore to the sync engine, the backup manager and the
  remote store, and owns their background tasks.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from lifesync.cloud import HttpRemoteStore
from lifesync.config import SyncConfig, load_config
from lifesync.protocols import MigrationFailed, RemoteStore, SessionProvider
from lifesync.storage import MIGRATION_BACKUP_KEY, DatasetRepository, LocalStore
from lifesync.sync import (
    CURRENT_SCHEMA_VERSION,
    SINGLETON_RECORD_ID,
    BackupManager,
    ChangeTracker,
    FieldMapper,
    RecordHistory,
    RecordVersion,
    ScheduledTask,
    SyncEngine,
    stamp_record,
    upgrade,
)
from lifesync.types import BackupSnapshot, Dataset, SyncResult, parse_datetime, utc_now

logger = logging.getLogger(__name__)

# Version assumed for data written before versions were recorded
LEGACY_DATASET_VERSION = "0.0.0"

# How often the auto-backup task checks whether a backup is due
BACKUP_CHECK_INTERVAL = 60 * 60

RecordListener = Callable[[str, Dict[str, Any]], Any]


class LifeStore:
    """Local-first record access for the UI.

    Args:
        store: The local store.
        tracker: Pending-change marker (defaults to one over store).
        mapper: Field mapper; validates the collection list at construction.
        history: Per-record version history (defaults to one over store).
        keep_history: Set False to record no history at all.
    """

    def __init__(
        self,
        store: LocalStore,
        tracker: Optional[ChangeTracker] = None,
        mapper: Optional[FieldMapper] = None,
        history: Optional[RecordHistory] = None,
        keep_history: bool = True,
    ):
        self.store = store
        self.tracker = tracker or ChangeTracker(store)
        self.mapper = mapper or FieldMapper()
        self.history = history or (RecordHistory(store) if keep_history else None)
        self._repo = DatasetRepository(store)
        self._listeners: List[RecordListener] = []
        self._engine: Optional[SyncEngine] = None

    def attach_engine(self, engine: Optional[SyncEngine]) -> None:
        self._engine = engine

    def _check_collection(self, collection: str) -> None:
        if collection not in self.mapper.collections:
            raise KeyError(f"Unknown collection: {collection}")

    # === Loading ===

    async def load(self) -> Dataset:
        """Read the local dataset and upgrade it to the current schema.

        A failed migration is logged and the dataset stays at its old
        version; the app keeps working on the data it has.
        """
        dataset = await self._repo.read_dataset(default_version=LEGACY_DATASET_VERSION)
        if dataset.record_count() == 0 and await self._repo.get_version() is None:
            await self._repo.set_version(CURRENT_SCHEMA_VERSION)
            dataset.version = CURRENT_SCHEMA_VERSION
            return dataset

        try:
            upgraded = upgrade(dataset)
        except MigrationFailed as e:
            logger.error(f"Keeping dataset at v{dataset.version}: {e}")
            return dataset

        if upgraded is not dataset:
            async with self.store.lock:
                await self._save_migration_backup(dataset)
                await self._repo.write_dataset(upgraded)
        return upgraded

    async def _save_migration_backup(self, dataset: Dataset) -> None:
        await self.store.put(
            MIGRATION_BACKUP_KEY,
            {
                "createdAt": utc_now(),
                "version": dataset.version,
                "collections": dataset.collections,
            },
        )
        logger.info(
            f"Saved pre-migration backup of v{dataset.version} ({dataset.record_count()} records)"
        )

    async def has_migration_backup(self) -> bool:
        return await self.store.get(MIGRATION_BACKUP_KEY) is not None

    async def restore_migration_backup(self) -> bool:
        """Roll local data back to the copy taken before the last migration.

        Records created since are removed and the old version is restored,
        so the next load() runs the migration again. Returns False when no
        backup exists.
        """
        backup = await self.store.get(MIGRATION_BACKUP_KEY)
        if backup is None:
            return False

        restored = Dataset(collections=backup["collections"], version=backup["version"])
        keep = {
            (collection, record["id"])
            for collection, records in restored.collections.items()
            for record in records
        }
        async with self.store.lock:
            current = await self._repo.read_dataset()
            await self._repo.write_dataset(restored)
            for collection, records in current.collections.items():
                for record in records:
                    if (collection, record["id"]) not in keep:
                        await self._repo.delete_record(collection, record["id"])
        logger.warning(
            f"Restored pre-migration backup from {backup.get('createdAt')} (v{restored.version})"
        )
        return True

    async def clear_migration_backup(self) -> None:
        await self.store.delete(MIGRATION_BACKUP_KEY)

    async def version(self) -> str:
        return await self._repo.get_version() or LEGACY_DATASET_VERSION

    # === Reads ===

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Live record, or None if absent or deleted."""
        self._check_collection(collection)
        record = await self._repo.get_record(collection, record_id)
        if record is None or record.get("deleted"):
            return None
        return record

    async def list(self, collection: str, include_deleted: bool = False) -> List[Dict[str, Any]]:
        self._check_collection(collection)
        return await self._repo.list_records(collection, include_deleted=include_deleted)

    # === Writes ===

    async def save(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update a record. Returns the stored (stamped) record."""
        self._check_collection(collection)
        record = dict(record)
        if self.mapper.is_singleton(collection):
            if record.get("id", SINGLETON_RECORD_ID) != SINGLETON_RECORD_ID:
                raise ValueError(
                    f"{collection} holds a single record with id {SINGLETON_RECORD_ID!r}"
                )
            record["id"] = SINGLETON_RECORD_ID
        record.setdefault("id", str(uuid.uuid4()))

        async with self.store.lock:
            existing = await self._repo.get_record(collection, record["id"])
            stamped = stamp_record(_carry_clock(existing, record))
            await self._repo.put_record(collection, stamped)
            await self.tracker.mark_pending_changes()
            if self.history is not None:
                await self.history.record(collection, stamped)

        self._changed(collection, stamped)
        return stamped

    async def get_singleton(self, collection: str) -> Optional[Dict[str, Any]]:
        """The one record of a singleton collection (stats, healthProfile)."""
        if not self.mapper.is_singleton(collection):
            raise ValueError(f"{collection} is not a singleton collection")
        return await self.get(collection, SINGLETON_RECORD_ID)

    async def save_singleton(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.mapper.is_singleton(collection):
            raise ValueError(f"{collection} is not a singleton collection")
        return await self.save(collection, {**data, "id": SINGLETON_RECORD_ID})

    async def delete(self, collection: str, record_id: str) -> bool:
        """Tombstone a record. Returns False if there was nothing to delete."""
        self._check_collection(collection)
        async with self.store.lock:
            existing = await self._repo.get_record(collection, record_id)
            if existing is None or existing.get("deleted"):
                return False
            tombstone = stamp_record({**existing, "deleted": True})
            await self._repo.put_record(collection, tombstone)
            await self.tracker.mark_pending_changes()
            if self.history is not None:
                await self.history.record(collection, tombstone, description="Deleted")

        self._changed(collection, tombstone)
        return True

    # === History ===

    async def history_of(self, collection: str, record_id: str) -> List[RecordVersion]:
        """Saved versions of a record, oldest first (empty without history)."""
        self._check_collection(collection)
        if self.history is None:
            return []
        return await self.history.versions(collection, record_id)

    async def revert(
        self, collection: str, record_id: str, version_id: str
    ) -> Optional[Dict[str, Any]]:
        """Make an earlier version of a record current again.

        The revert is a new local edit: the record's clock moves forward, so
        it syncs like any other save. Returns None if the version is unknown.
        """
        self._check_collection(collection)
        if self.history is None:
            return None
        target = await self.history.get(collection, record_id, version_id)
        if target is None:
            return None

        async with self.store.lock:
            existing = await self._repo.get_record(collection, record_id)
            stamped = stamp_record(_carry_clock(existing, dict(target.data)))
            await self._repo.put_record(collection, stamped)
            await self.tracker.mark_pending_changes()
            await self.history.record(
                collection,
                stamped,
                description=f"Reverted to version {target.version}",
                parent_version=target.id,
            )

        logger.info(f"Reverted {collection}/{record_id} to version {target.version}")
        self._changed(collection, stamped)
        return stamped

    async def replace_dataset(self, dataset: Dataset) -> None:
        """Replace local data with dataset (restore). Marks everything for push.

        Live local records missing from dataset are tombstoned in the same
        batch, so the deletion reaches other devices too.
        """
        dataset = upgrade(dataset)
        collections = {
            collection: [stamp_record(r) for r in records]
            for collection, records in dataset.collections.items()
        }
        async with self.store.lock:
            current = await self._repo.read_dataset()
            removed = 0
            for collection, records in current.collections.items():
                if collection not in self.mapper.collections:
                    continue
                kept = {r["id"] for r in collections.get(collection, [])}
                for record in records:
                    if record.get("deleted") or record["id"] in kept:
                        continue
                    collections.setdefault(collection, []).append(
                        stamp_record({**record, "deleted": True})
                    )
                    removed += 1
            stamped = Dataset(
                collections=collections,
                version=dataset.version,
                updated_at=dataset.updated_at,
            )
            await self._repo.write_dataset(stamped)
            await self.tracker.mark_pending_changes()
        logger.info(
            f"Replaced local data: {stamped.record_count() - removed} records restored, "
            f"{removed} tombstoned"
        )
        if self._engine is not None:
            self._engine.notify_local_change()

    # === Listeners ===

    def subscribe(self, callback: RecordListener) -> Callable[[], None]:
        """Call callback(collection, record) after each local save/delete."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _changed(self, collection: str, record: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection, record)
            except Exception as e:
                logger.error(f"Record listener failed: {e}", exc_info=True)
        if self._engine is not None:
            self._engine.notify_local_change()


def _carry_clock(existing: Optional[Dict[str, Any]], record: Dict[str, Any]) -> Dict[str, Any]:
    """Give record the stored copy's clock if it is ahead (stale edit from the UI)."""
    if existing is None:
        return record
    merged = dict(record)
    merged["version"] = max(int(existing.get("version") or 0), int(record.get("version") or 0))
    stored_at = parse_datetime(existing.get("updatedAt"))
    given_at = parse_datetime(record.get("updatedAt"))
    if stored_at is not None and (given_at is None or stored_at > given_at):
        merged["updatedAt"] = existing["updatedAt"]
    return merged


class LifeSync:
    """Application wiring: local store, sync engine, backups.

    Use LifeSync.create() rather than building the parts by hand. Without
    a remote store (no backend_url configured) everything runs local-only.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: LocalStore,
        life: LifeStore,
        engine: Optional[SyncEngine] = None,
        backups: Optional[BackupManager] = None,
        remote: Optional[RemoteStore] = None,
    ):
        self.config = config
        self.store = store
        self.life = life
        self.engine = engine
        self.backups = backups
        self.remote = remote
        self._backup_task: Optional[ScheduledTask] = None
        life.attach_engine(engine)

    @classmethod
    def create(
        cls,
        config: Optional[SyncConfig] = None,
        session: Optional[SessionProvider] = None,
        remote: Optional[RemoteStore] = None,
        store: Optional[LocalStore] = None,
        on_unauthorized: Optional[Callable[[], Any]] = None,
    ) -> "LifeSync":
        config = config or load_config()
        store = store or LocalStore.from_config(config)
        mapper = FieldMapper()
        tracker = ChangeTracker(store)
        history = None
        if config.history_enabled:
            history = RecordHistory(store, device_id=config.device_id, limit=config.history_limit)
        life = LifeStore(store, tracker, mapper, history=history, keep_history=history is not None)

        if remote is None and config.backend_url:
            remote = HttpRemoteStore.from_config(config)
        if remote is None or session is None:
            logger.info("No remote store or session configured, running local-only")
            return cls(config, store, life)

        engine = SyncEngine(
            store,
            tracker,
            mapper,
            remote,
            session,
            config=config,
            on_unauthorized=on_unauthorized,
        )
        backups = BackupManager(store, remote, session, config=config)
        return cls(config, store, life, engine=engine, backups=backups, remote=remote)

    async def start(self) -> None:
        """Load (and upgrade) local data, then start background sync and backups."""
        await self.life.load()
        if self.life.history is not None:
            await self.life.history.cleanup()
        if self.engine is not None:
            await self.engine.start()
        if self.backups is not None:
            self._backup_task = ScheduledTask(
                "auto-backup",
                min(BACKUP_CHECK_INTERVAL, self.config.backup_interval_seconds),
                self.backups.maybe_backup,
                run_immediately=True,
            )
            self._backup_task.start()

    async def stop(self) -> None:
        if self._backup_task is not None:
            self._backup_task.cancel()
            self._backup_task = None
        if self.engine is not None:
            await self.engine.stop()
        if isinstance(self.remote, HttpRemoteStore):
            await self.remote.aclose()
        self.store.close()

    async def sync_now(self) -> Optional[SyncResult]:
        if self.engine is None:
            return None
        return await self.engine.force_sync()

    async def restore_latest_backup(self) -> Optional[BackupSnapshot]:
        """Replace local data with the newest remote backup, if there is one."""
        if self.backups is None:
            return None
        snapshot = await self.backups.latest_backup()
        if snapshot is None:
            return None
        await self.life.replace_dataset(Dataset(collections=snapshot.data, version=snapshot.version))
        logger.info(f"Restored backup {snapshot.id} from {snapshot.created_at}")
        return snapshot
