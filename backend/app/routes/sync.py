"""Sync routes: the user's full dataset with optimistic concurrency.

Each accepted push bumps the stored revision by one. A push must name the
revision it was based on; a stale one gets 409 and the client re-pulls.
Pushing content identical to what is stored is a no-op that returns the
current revision, so a retried push never creates a new revision.
"""

import hashlib
import json

from fastapi import APIRouter, HTTPException, Request, status

from ..auth import CurrentUser
from ..config import get_settings
from ..database import (
    Database,
    RevisionConflict,
    delete_user_data,
    get_user_data,
    save_user_data,
)
from ..logging_config import get_logger, log_sync_operation
from ..models import SyncDataResponse, SyncPushRequest, SyncPushResponse
from ..rate_limit import limiter, sync_rate_limit

logger = get_logger("lifesync.sync")
router = APIRouter(prefix="/sync", tags=["sync"])


def payload_size(data) -> int:
    """Serialized size of the dataset, compact JSON, in bytes."""
    return len(json.dumps(data, separators=(",", ":"), default=str).encode("utf-8"))


def content_hash(data, version: str) -> str:
    canonical = json.dumps({"data": data, "version": version}, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@router.get("", response_model=SyncDataResponse)
async def get_dataset(auth: CurrentUser, db: Database):
    """Return the stored dataset (404 if the user never pushed)."""
    row = await get_user_data(db, auth.user_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No data stored")
    logger.info(f"PULL | {auth.user_id} | revision={row.get('revision', 0)}")
    return SyncDataResponse(
        data=row.get("data") or {},
        version=row.get("version") or "1.0.0",
        revision=row.get("revision") or 0,
        updated_at=row.get("updated_at"),
    )


@router.post("", response_model=SyncPushResponse)
@limiter.limit(sync_rate_limit)
async def push_dataset(
    request: Request,
    payload: SyncPushRequest,
    auth: CurrentUser,
    db: Database,
):
    """Store a new revision of the dataset."""
    settings = get_settings()
    user_id = auth.user_id

    size = payload_size(payload.data)
    if size > settings.max_payload_bytes:
        log_sync_operation(user_id, "push", f"{size} bytes", False, "payload too large")
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "message": "Data too large",
                "size": size,
                "limit": settings.max_payload_bytes,
            },
        )

    digest = content_hash(payload.data, payload.version)
    current = await get_user_data(db, user_id)
    current_revision = current.get("revision", 0) if current else 0

    if current and current.get("content_hash") == digest:
        log_sync_operation(user_id, "push", f"revision={current_revision} unchanged", True)
        return SyncPushResponse(
            revision=current_revision,
            updated_at=current.get("updated_at"),
            unchanged=True,
        )

    if payload.expected_revision != current_revision:
        log_sync_operation(
            user_id,
            "push",
            f"expected={payload.expected_revision} current={current_revision}",
            False,
            "conflict",
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Dataset changed since your last sync",
                "current_revision": current_revision,
            },
        )

    try:
        row = await save_user_data(
            db,
            user_id,
            payload.data,
            payload.version,
            expected_revision=current_revision,
            content_hash=digest,
        )
    except RevisionConflict as e:
        log_sync_operation(user_id, "push", f"expected={current_revision}", False, str(e))
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "current_revision": None},
        )

    revision = row.get("revision", current_revision + 1)
    log_sync_operation(user_id, "push", f"revision={revision} size={size}", True)
    return SyncPushResponse(revision=revision, updated_at=row.get("updated_at"))


@router.delete("")
async def wipe_dataset(auth: CurrentUser, db: Database):
    """Delete the user's stored dataset."""
    deleted = await delete_user_data(db, auth.user_id)
    log_sync_operation(auth.user_id, "wipe", f"rows={deleted}", True)
    return {"ok": True, "deleted": deleted}
