"""Backup routes: immutable snapshots of a user's dataset."""

from fastapi import APIRouter, HTTPException, Query, status

from ..auth import CurrentUser
from ..config import get_settings
from ..database import Database, create_backup, get_latest_backup, prune_user_backups
from ..logging_config import get_logger, log_sync_operation
from ..models import BackupCreateRequest, BackupResponse, PruneResponse
from .sync import payload_size

logger = get_logger("lifesync.backup")
router = APIRouter(prefix="/backup", tags=["backup"])


def _to_response(row: dict) -> BackupResponse:
    return BackupResponse(
        id=str(row["id"]),
        user_id=row["user_id"],
        version=row["version"],
        created_at=row["created_at"],
        data=row.get("data") or {},
    )


@router.get("", response_model=BackupResponse)
async def latest_backup(auth: CurrentUser, db: Database):
    """Return the user's newest backup (404 if none)."""
    row = await get_latest_backup(db, auth.user_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No backup found")
    return _to_response(row)


@router.post("", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
async def upload_backup(request: BackupCreateRequest, auth: CurrentUser, db: Database):
    """Store a new backup snapshot."""
    if not request.version or request.data is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing version or data",
        )

    settings = get_settings()
    size = payload_size(request.data)
    if size > settings.max_payload_bytes:
        log_sync_operation(auth.user_id, "backup", f"{size} bytes", False, "payload too large")
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"message": "Backup too large", "size": size, "limit": settings.max_payload_bytes},
        )

    try:
        row = await create_backup(
            db,
            auth.user_id,
            request.version,
            request.data,
            backup_id=request.id,
            created_at=request.created_at.isoformat() if request.created_at else None,
        )
    except Exception as e:
        logger.error(f"Backup insert failed for {auth.user_id}: {e}")
        log_sync_operation(auth.user_id, "backup", f"v{request.version}", False, "database error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store backup",
        )

    log_sync_operation(auth.user_id, "backup", f"id={row['id']} v{request.version}", True)
    return _to_response(row)


@router.delete("", response_model=PruneResponse)
async def prune_backups(
    auth: CurrentUser,
    db: Database,
    keep: int | None = Query(None, ge=0, le=100),
):
    """Delete all but the newest `keep` backups (default KEEP_BACKUPS)."""
    keep_count = get_settings().keep_backups if keep is None else keep
    deleted = await prune_user_backups(db, auth.user_id, keep_count)
    log_sync_operation(auth.user_id, "prune", f"keep={keep_count} deleted={deleted}", True)
    return PruneResponse(deleted=deleted)
