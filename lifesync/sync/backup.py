"""Backup snapshots of the local dataset.

Backups are best-effort: every public method logs and swallows failures so
a broken backup never blocks sync or the UI. Callers get None (or 0) back.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Optional

from lifesync.config import SyncConfig
from lifesync.protocols import RemoteStore, SessionProvider
from lifesync.storage import LAST_BACKUP_KEY, DatasetRepository, LocalStore
from lifesync.types import BackupSnapshot, parse_datetime, utc_now

from .versioning import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)


class BackupManager:
    """Creates, fetches and prunes remote backup snapshots."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        session: SessionProvider,
        config: Optional[SyncConfig] = None,
    ):
        self.config = config or SyncConfig()
        self._store = store
        self._repo = DatasetRepository(store)
        self._remote = remote
        self._session = session

    async def _call(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.config.call_timeout_seconds)

    async def last_backup_at(self) -> Optional[str]:
        return await self._store.get(LAST_BACKUP_KEY)

    async def is_due(self) -> bool:
        last = parse_datetime(await self.last_backup_at())
        if last is None:
            return True
        now = parse_datetime(utc_now())
        return now - last >= timedelta(seconds=self.config.backup_interval_seconds)

    async def maybe_backup(self) -> Optional[BackupSnapshot]:
        """Create a backup if the last successful one is older than the interval."""
        try:
            if not await self.is_due():
                return None
        except Exception as e:
            logger.warning(f"Could not read last backup time: {e}")
            return None
        return await self.create_backup()

    async def create_backup(self) -> Optional[BackupSnapshot]:
        user = self._session.current_user()
        if user is None:
            logger.debug("No signed-in user, skipping backup")
            return None
        try:
            dataset = await self._repo.read_dataset(default_version=CURRENT_SCHEMA_VERSION)
            snapshot = BackupSnapshot(
                id=str(uuid.uuid4()),
                owner_id=user.id,
                version=dataset.version,
                created_at=utc_now(),
                data=dataset.collections,
            )
            await self._call(self._remote.create_backup(user.id, snapshot))
            await self._store.put(LAST_BACKUP_KEY, snapshot.created_at)
        except Exception as e:
            logger.warning(f"Backup failed: {e}")
            return None

        logger.info(f"Created backup {snapshot.id} ({dataset.record_count()} records)")
        await self.prune()
        return snapshot

    async def latest_backup(self) -> Optional[BackupSnapshot]:
        user = self._session.current_user()
        if user is None:
            return None
        try:
            return await self._call(self._remote.fetch_latest_backup(user.id))
        except Exception as e:
            logger.warning(f"Could not fetch latest backup: {e}")
            return None

    async def prune(self, keep_count: Optional[int] = None) -> int:
        """Keep only the newest keep_count backups. Returns how many were deleted."""
        user = self._session.current_user()
        if user is None:
            return 0
        keep = self.config.backup_keep_count if keep_count is None else keep_count
        try:
            deleted = await self._call(self._remote.prune_backups(user.id, keep))
        except Exception as e:
            logger.warning(f"Backup prune failed: {e}")
            return 0
        if deleted:
            logger.info(f"Pruned {deleted} old backups (keeping {keep})")
        return deleted
