"""API routes."""

from .backup import router as backup_router
from .cron import router as cron_router
from .sync import router as sync_router

__all__ = [
    "backup_router",
    "cron_router",
    "sync_router",
]
