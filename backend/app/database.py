"""Database utilities for Supabase integration.

The supabase client is synchronous; every query runs in a worker thread
via ``asyncio.to_thread`` so the event loop stays free.

Tables:
    user_data:    one row per user: data (jsonb), version, revision,
                  content_hash, updated_at
    user_backups: id, user_id, version, data (jsonb), created_at
"""

import asyncio
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import Depends

from supabase import Client, create_client

from .config import Settings, get_settings
from .logging_config import get_logger

logger = get_logger("lifesync.database")

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

USER_DATA_TABLE = "user_data"
USER_BACKUPS_TABLE = "user_backups"

# Rows per request when scanning all backups; at or below PostgREST max-rows
BACKUP_PAGE_SIZE = 1000
# Backup ids per delete request, keeping the request URL short
DELETE_CHUNK_SIZE = 100


class RevisionConflict(Exception):
    """The stored revision moved between read and write."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# User Data
# =============================================================================


async def get_user_data(db: Client, user_id: str) -> dict | None:
    """Get the user's stored dataset row."""

    def _query():
        return db.table(USER_DATA_TABLE).select("*").eq("user_id", user_id).limit(1).execute()

    result = await asyncio.to_thread(_query)
    return result.data[0] if result.data else None


async def save_user_data(
    db: Client,
    user_id: str,
    data: dict[str, Any],
    version: str,
    expected_revision: int,
    content_hash: str,
) -> dict:
    """Write a new dataset revision if the stored one is still expected_revision.

    Revision 0 means no row yet (insert); otherwise the update is
    conditional on the current revision.

    Raises:
        RevisionConflict: if another writer got there first.
    """
    row = {
        "user_id": user_id,
        "data": data,
        "version": version,
        "revision": expected_revision + 1,
        "content_hash": content_hash,
        "updated_at": _now(),
    }

    if expected_revision == 0:

        def _insert():
            return db.table(USER_DATA_TABLE).insert(row).execute()

        try:
            result = await asyncio.to_thread(_insert)
        except Exception as e:
            # Unique violation on user_id: a concurrent first push won
            logger.info(f"Insert of first revision for {user_id} failed: {e}")
            raise RevisionConflict("Dataset was created concurrently") from e
    else:

        def _update():
            return (
                db.table(USER_DATA_TABLE)
                .update(row)
                .eq("user_id", user_id)
                .eq("revision", expected_revision)
                .execute()
            )

        result = await asyncio.to_thread(_update)

    if not result.data:
        raise RevisionConflict(f"Revision {expected_revision} is no longer current")
    return result.data[0]


async def delete_user_data(db: Client, user_id: str) -> int:
    """Delete the user's dataset. Returns number of rows removed."""

    def _delete():
        return db.table(USER_DATA_TABLE).delete().eq("user_id", user_id).execute()

    result = await asyncio.to_thread(_delete)
    return len(result.data or [])


async def check_connection(db: Client) -> None:
    """Raise if the database can't answer a trivial query."""

    def _query():
        return db.table(USER_DATA_TABLE).select("user_id").limit(1).execute()

    await asyncio.to_thread(_query)


# =============================================================================
# Backups
# =============================================================================


async def get_latest_backup(db: Client, user_id: str) -> dict | None:
    def _query():
        return (
            db.table(USER_BACKUPS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.data[0] if result.data else None


async def create_backup(
    db: Client,
    user_id: str,
    version: str,
    data: dict[str, Any],
    backup_id: str | None = None,
    created_at: str | None = None,
) -> dict:
    """Insert a backup snapshot. Snapshots are never updated afterwards."""
    row = {
        "user_id": user_id,
        "version": version,
        "data": data,
        "created_at": created_at or _now(),
    }
    if backup_id:
        row["id"] = backup_id

    def _insert():
        return db.table(USER_BACKUPS_TABLE).insert(row).execute()

    result = await asyncio.to_thread(_insert)
    if not result.data:
        raise RuntimeError(f"Failed to create backup for user {user_id}")
    return result.data[0]


async def _delete_backups(db: Client, backup_ids: list[str]) -> int:
    if not backup_ids:
        return 0

    for start in range(0, len(backup_ids), DELETE_CHUNK_SIZE):
        chunk = backup_ids[start : start + DELETE_CHUNK_SIZE]

        def _delete(chunk=chunk):
            return db.table(USER_BACKUPS_TABLE).delete().in_("id", chunk).execute()

        await asyncio.to_thread(_delete)
    return len(backup_ids)


async def prune_user_backups(db: Client, user_id: str, keep: int) -> int:
    """Delete all but the newest `keep` backups of one user."""

    def _query():
        return (
            db.table(USER_BACKUPS_TABLE)
            .select("id, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    stale = [row["id"] for row in (result.data or [])[max(keep, 0) :]]
    return await _delete_backups(db, stale)


async def _all_backup_rows(db: Client) -> list[dict]:
    """Every backup's id, owner and timestamp, newest first, fetched page by page.

    PostgREST caps a single select at its max-rows setting, so one
    unpaginated query would silently miss the oldest backups.
    """
    rows: list[dict] = []
    start = 0
    while True:

        def _page(start=start):
            return (
                db.table(USER_BACKUPS_TABLE)
                .select("id, user_id, created_at")
                .order("created_at", desc=True)
                .range(start, start + BACKUP_PAGE_SIZE - 1)
                .execute()
            )

        page = (await asyncio.to_thread(_page)).data or []
        rows.extend(page)
        if len(page) < BACKUP_PAGE_SIZE:
            return rows
        start += BACKUP_PAGE_SIZE


async def prune_all_backups(db: Client, keep: int) -> int:
    """Apply the retention policy to every user. Returns total deleted."""
    seen: dict[str, int] = {}
    stale = []
    for row in await _all_backup_rows(db):
        count = seen.get(row["user_id"], 0)
        if count >= keep:
            stale.append(row["id"])
        seen[row["user_id"]] = count + 1
    return await _delete_backups(db, stale)
