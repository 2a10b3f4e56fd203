"""Sync engine: reconciles the local store with the remote store.

One cycle is pull-then-push:

1. Pull the remote dataset, upgrade it if it is older than the current
   schema, and resolve every remote record against its local counterpart
   (record-level last-writer-wins). Remote winners are written locally
   under the store lock. Records that exist only locally are never
   deleted; deletions travel as tombstones.
2. Push the full local dataset when there are pending local changes, when
   the merge kept local winners, or when the remote has nothing yet. The
   push carries the revision seen by the pull; if the remote moved in the
   meantime it answers Conflict and the engine re-pulls, re-merges and
   retries a bounded number of times.

Only a confirmed push advances the cursor and clears the pending-change
marker, and the marker is cleared only if no mutation happened since the
cycle started. Failures never escape the engine: they become
``SyncStatus(state=ERROR, reason=...)`` and, for transient failures, a
retry scheduled with exponential backoff.

At most one cycle is in flight. Triggers that arrive while syncing are
coalesced into a follow-up debounce.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from lifesync.config import SyncConfig
from lifesync.protocols import (
    ConflictError,
    LifeSyncError,
    PayloadTooLargeError,
    RemoteError,
    RemoteStore,
    SessionProvider,
    SyncTimeoutError,
    UnauthorizedError,
)
from lifesync.storage import SYNC_CURSOR_KEY, DatasetRepository, LocalStore
from lifesync.types import (
    RemoteDataset,
    SyncCursor,
    SyncFailureReason,
    SyncResult,
    SyncState,
    SyncStatus,
    TriggerSource,
    payload_size,
    utc_now,
)

from .backoff import Backoff
from .change_tracker import ChangeTracker
from .conflict import resolve
from .field_mapper import FieldMapper
from .scheduler import Debouncer, ScheduledTask
from .versioning import CURRENT_SCHEMA_VERSION, compare_versions, upgrade

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], Any]


class SyncEngine:
    """Push/pull orchestrator with status reporting and retry scheduling.

    Args:
        store: Local store shared with the UI facade.
        tracker: Pending-change marker.
        mapper: Local <-> remote record translation.
        remote: Remote record store.
        session: Yields the current user; None means guest (local only).
        config: Timing and size limits.
        on_unauthorized: Called when the remote rejects the session.
    """

    def __init__(
        self,
        store: LocalStore,
        tracker: ChangeTracker,
        mapper: FieldMapper,
        remote: RemoteStore,
        session: SessionProvider,
        config: Optional[SyncConfig] = None,
        on_unauthorized: Optional[Callable[[], Any]] = None,
    ):
        self.config = config or SyncConfig()
        self._store = store
        self._repo = DatasetRepository(store)
        self._tracker = tracker
        self._mapper = mapper
        self._remote = remote
        self._session = session
        self.on_unauthorized = on_unauthorized

        self._status = SyncStatus()
        self._listeners: List[StatusListener] = []
        self._online = True
        self._halted = False
        self._in_flight = False
        self._resync_requested = False
        self.last_result: Optional[SyncResult] = None

        self._backoff = Backoff(
            base_seconds=self.config.retry_base_seconds,
            factor=self.config.retry_factor,
            max_seconds=self.config.retry_max_seconds,
        )
        self._debouncer = Debouncer("debounce", self.config.debounce_seconds, self._on_debounce)
        self._retry_timer = Debouncer("retry", self.config.retry_base_seconds, self._on_retry)
        self._periodic = ScheduledTask(
            "periodic-sync", self.config.sync_interval_seconds, self._on_periodic
        )
        self._startup_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return replace(self._status)

    @property
    def online(self) -> bool:
        return self._online

    @property
    def halted(self) -> bool:
        """True after an authorization failure, until force_sync() or resume()."""
        return self._halted

    def subscribe(self, callback: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _publish(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        snapshot = self.status
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Sync status listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic task and run a startup sync for a signed-in user.

        The startup cycle always pulls, so edits made on other devices show
        up even when this device has nothing to push.
        """
        pending = await self._tracker.has_pending_changes()
        cursor = await self._load_cursor()
        self._publish(pending=pending, last_synced_at=cursor.synced_at)
        self._periodic.start()
        signed_in = self._session.current_user() is not None
        if signed_in and self._online:
            self._startup_task = asyncio.create_task(self.trigger(TriggerSource.STARTUP))
        logger.info(f"Sync engine started (pending={pending}, signed_in={signed_in})")

    async def stop(self) -> None:
        self._debouncer.cancel()
        self._retry_timer.cancel()
        self._periodic.cancel()
        if self._startup_task is not None and not self._startup_task.done():
            self._startup_task.cancel()
        self._startup_task = None
        logger.info("Sync engine stopped")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_local_change(self) -> None:
        """Called after every local mutation; (re)arms the debounce timer."""
        self._publish(pending=True)
        if self._online and not self._halted:
            self._debouncer.call()

    async def set_online(self, online: bool) -> Optional[SyncResult]:
        """Connectivity change. Going online triggers an immediate sync."""
        if not online:
            was_online = self._online
            self._online = False
            self._debouncer.cancel()
            self._retry_timer.cancel()
            self._publish(state=SyncState.OFFLINE, reason=None, message=None, next_retry_at=None)
            if was_online:
                logger.info("Went offline; pending sync work deferred")
            return None

        if self._online:
            return None
        self._online = True
        logger.info("Back online")
        if self._halted:
            self._publish(state=SyncState.ERROR, reason=SyncFailureReason.UNAUTHORIZED)
            return None
        self._publish(state=SyncState.IDLE, reason=None, message=None)
        return await self.trigger(TriggerSource.ONLINE)

    async def check_connectivity(self) -> bool:
        """Probe the remote health endpoint and update the online state."""
        try:
            healthy = bool(await self._call(self._remote.health_check()))
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            healthy = False
        await self.set_online(healthy)
        return healthy

    async def force_sync(self) -> Optional[SyncResult]:
        """User-requested sync. Clears an authorization halt and any backoff.

        Returns None if a cycle is already in flight (the request is
        coalesced into it).
        """
        if not self._online:
            return SyncResult(
                reason=SyncFailureReason.OFFLINE,
                errors=["Cannot sync while offline"],
            )
        self._halted = False
        self._backoff.reset()
        self._retry_timer.cancel()
        return await self.trigger(TriggerSource.MANUAL)

    def resume(self) -> None:
        """Re-enable automatic triggers after re-authentication."""
        if not self._halted:
            return
        self._halted = False
        if self._online:
            self._publish(state=SyncState.IDLE, reason=None, message=None)
        if self._status.pending and self._online:
            self._debouncer.call()

    async def trigger(self, source: TriggerSource = TriggerSource.MANUAL) -> Optional[SyncResult]:
        """Run one cycle unless one is in flight, we're offline, or halted."""
        if not self._online:
            logger.debug(f"Ignoring {source.value} trigger while offline")
            return None
        if self._halted and source != TriggerSource.MANUAL:
            logger.debug(f"Ignoring {source.value} trigger until re-authentication")
            return None
        if self._in_flight:
            self._resync_requested = True
            logger.debug(f"Coalescing {source.value} trigger into the running sync")
            return None
        return await self._run_cycle(source)

    async def _on_debounce(self) -> None:
        await self.trigger(TriggerSource.DEBOUNCE)

    async def _on_retry(self) -> None:
        await self.trigger(TriggerSource.RETRY)

    async def _on_periodic(self) -> None:
        if not self._online or self._halted:
            return
        if self._session.current_user() is None:
            return
        # Pull even with nothing pending so other devices' edits arrive
        await self.trigger(TriggerSource.PERIODIC)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self, source: TriggerSource) -> SyncResult:
        self._in_flight = True
        self._resync_requested = False
        self._debouncer.cancel()
        self._retry_timer.cancel()
        self._publish(state=SyncState.SYNCING, reason=None, message=None, next_retry_at=None)
        try:
            result = await self._sync(source)
        except Exception as e:
            result = self._handle_failure(e, source)
        else:
            await self._handle_success(result)
        finally:
            self._in_flight = False

        self.last_result = result
        if self._resync_requested and result.success:
            self._resync_requested = False
            if await self._tracker.has_pending_changes():
                self._debouncer.call()
        return result

    async def _sync(self, source: TriggerSource) -> SyncResult:
        user = self._session.current_user()
        if user is None:
            logger.debug("No signed-in user, skipping remote sync")
            return SyncResult(skipped="guest")

        generation = await self._tracker.generation()
        pending = await self._tracker.has_pending_changes()
        result = SyncResult()

        remote = await self._call(self._remote.fetch_dataset(user.id))
        revision = await self._pull(remote, result)

        if pending or result.local_wins > 0 or remote is None:
            while True:
                try:
                    revision = await self._push(user.id, revision)
                    result.pushed = True
                    break
                except ConflictError as e:
                    if result.conflicts_retried >= self.config.max_conflict_retries:
                        raise
                    result.conflicts_retried += 1
                    logger.info(
                        f"Remote moved past revision {revision} "
                        f"(now {e.current_revision}), re-pulling "
                        f"[{result.conflicts_retried}/{self.config.max_conflict_retries}]"
                    )
                    remote = await self._call(self._remote.fetch_dataset(user.id))
                    revision = await self._pull(remote, result)

        result.revision = revision
        await self._save_cursor(SyncCursor(revision=revision, synced_at=utc_now()))
        if result.pushed:
            await self._tracker.clear_pending_changes(generation)

        logger.info(
            f"Sync ({source.value}) complete: revision={revision} pushed={result.pushed} "
            f"pulled={result.pulled} local_wins={result.local_wins}"
        )
        return result

    async def _pull(self, remote: Optional[RemoteDataset], result: SyncResult) -> int:
        """Merge a fetched dataset into the local store. Returns its revision."""
        if remote is None:
            return 0
        pulled, local_wins = await self._merge(remote)
        result.pulled += pulled
        # local_wins reflects the latest merge only; it drives the push decision
        result.local_wins = local_wins
        return remote.revision

    async def _merge(self, remote: RemoteDataset) -> Tuple[int, int]:
        incoming = upgrade(self._mapper.dataset_from_remote(remote))
        pulled = 0
        local_wins = 0
        writes = []

        async with self._store.lock:
            for collection, records in incoming.collections.items():
                excluded = self._mapper.excluded_fields(collection)
                for remote_record in records:
                    record_id = remote_record.get("id")
                    if not record_id:
                        logger.warning(f"Skipping remote {collection} record without id")
                        continue

                    local = await self._repo.get_record(collection, record_id)
                    resolution = resolve(local, remote_record)
                    if resolution.local_won:
                        local_wins += 1
                        continue

                    winner = dict(resolution.winner)
                    if local is not None:
                        # Local-only fields never travel; keep the device's copy
                        for name in excluded:
                            if name in local and name not in winner:
                                winner[name] = local[name]
                        if winner == local:
                            continue
                    writes.append((collection, winner))
                    pulled += 1

            if writes:
                await self._repo.put_records(writes)
            local_version = await self._repo.get_version()
            if local_version is None or compare_versions(incoming.version, local_version) > 0:
                await self._repo.set_version(incoming.version)

        logger.debug(f"Merged remote revision {remote.revision}: {pulled} pulled, {local_wins} local wins")
        return pulled, local_wins

    async def _push(self, owner_id: str, expected_revision: int) -> int:
        dataset = await self._repo.read_dataset(default_version=CURRENT_SCHEMA_VERSION)
        outbound = self._mapper.dataset_to_remote(dataset, owner_id, expected_revision)
        # Measured after mapping: local-only fields never count against the limit
        size = payload_size(outbound.data)
        if size > self.config.max_payload_bytes:
            raise PayloadTooLargeError(size, self.config.max_payload_bytes)

        return await self._call(
            self._remote.push_dataset(owner_id, outbound, expected_revision)
        )

    async def _call(self, awaitable: Awaitable):
        """Await a remote call with the fixed call timeout."""
        timeout = self.config.call_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SyncTimeoutError(f"Remote call timed out after {timeout}s") from e

    # ------------------------------------------------------------------
    # Outcome handling
    # ------------------------------------------------------------------

    async def _handle_success(self, result: SyncResult) -> None:
        self._backoff.reset()
        pending = await self._tracker.has_pending_changes()
        changes = dict(
            reason=None,
            message=None,
            pending=pending,
            next_retry_at=None,
            retry_attempt=0,
        )
        if result.skipped is None:
            changes["last_synced_at"] = utc_now()
        if self._online:
            changes["state"] = SyncState.IDLE
        self._publish(**changes)

    def _handle_failure(self, error: Exception, source: TriggerSource) -> SyncResult:
        reason = error.reason if isinstance(error, LifeSyncError) else SyncFailureReason.UNKNOWN
        result = SyncResult(reason=reason, errors=[str(error)])

        if not self._online:
            # Connectivity dropped mid-cycle; the online transition resyncs
            logger.info(f"Sync ({source.value}) interrupted by going offline: {error}")
            self._publish(state=SyncState.OFFLINE, reason=None, message=str(error))
            return result

        if isinstance(error, UnauthorizedError):
            self._halted = True
            logger.warning(f"Sync unauthorized, halting automatic sync: {error}")
            self._publish(
                state=SyncState.ERROR,
                reason=SyncFailureReason.UNAUTHORIZED,
                message=str(error),
                next_retry_at=None,
            )
            self._notify_unauthorized()
            return result

        if isinstance(error, ConflictError):
            # Contention with other devices is not a user-facing error
            retry_at = self._schedule_retry()
            logger.info(
                f"Sync ({source.value}) still conflicting after "
                f"{self.config.max_conflict_retries} re-pulls; retry {self._backoff.attempt} at {retry_at}"
            )
            self._publish(
                state=SyncState.IDLE,
                reason=None,
                message=None,
                next_retry_at=retry_at,
                retry_attempt=self._backoff.attempt,
            )
            return result

        if isinstance(error, RemoteError) and error.retryable:
            retry_at = self._schedule_retry()
            logger.warning(
                f"Sync ({source.value}) failed: {error}; "
                f"retry {self._backoff.attempt} at {retry_at}"
            )
            self._publish(
                state=SyncState.ERROR,
                reason=SyncFailureReason.UNREACHABLE,
                message=str(error),
                next_retry_at=retry_at,
                retry_attempt=self._backoff.attempt,
            )
            return result

        if isinstance(error, LifeSyncError):
            logger.error(f"Sync ({source.value}) failed ({reason.value}): {error}")
        else:
            logger.error(f"Sync ({source.value}) failed unexpectedly: {error}", exc_info=True)
        self._publish(state=SyncState.ERROR, reason=reason, message=str(error), next_retry_at=None)
        return result

    def _schedule_retry(self) -> str:
        """Arm the retry timer with the next backoff delay. Returns the retry time."""
        delay = self._backoff.next_delay()
        self._retry_timer.call(delay)
        return (datetime.now(timezone.utc) + timedelta(seconds=delay)).isoformat()

    def _notify_unauthorized(self) -> None:
        if self.on_unauthorized is None:
            return
        try:
            outcome = self.on_unauthorized()
            if inspect.isawaitable(outcome):
                asyncio.ensure_future(outcome)
        except Exception as e:
            logger.error(f"on_unauthorized callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    async def _load_cursor(self) -> SyncCursor:
        return SyncCursor.from_dict(await self._store.get(SYNC_CURSOR_KEY))

    async def _save_cursor(self, cursor: SyncCursor) -> None:
        await self._store.put(SYNC_CURSOR_KEY, cursor.to_dict())

    async def cursor(self) -> SyncCursor:
        return await self._load_cursor()
