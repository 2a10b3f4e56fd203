"""Scheduled job routes, called by the platform cron with CRON_SECRET."""

from fastapi import APIRouter, HTTPException, status

from ..auth import CronAuthorized
from ..config import get_settings
from ..database import Database, prune_all_backups
from ..logging_config import get_logger
from ..models import PruneResponse

logger = get_logger("lifesync.cron")
router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[CronAuthorized])


@router.get("/backup", response_model=PruneResponse)
async def prune_backups_job(db: Database):
    """Apply backup retention to every user (newest KEEP_BACKUPS kept)."""
    keep = get_settings().keep_backups
    try:
        deleted = await prune_all_backups(db, keep)
    except Exception as e:
        logger.error(f"Backup retention job failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Backup retention failed",
        )
    logger.info(f"CRON backup retention | keep={keep} deleted={deleted}")
    return PruneResponse(deleted=deleted)
