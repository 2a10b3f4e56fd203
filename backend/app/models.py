"""Pydantic models for API requests/responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# Collection/table name -> list of rows in the remote (snake_case) shape
DatasetData = dict[str, list[dict[str, Any]]]


# =============================================================================
# Sync Models
# =============================================================================


class SyncPushRequest(BaseModel):
    """Full-dataset push with optimistic concurrency."""

    data: DatasetData
    version: str = Field(..., min_length=1, max_length=32)
    expected_revision: int = Field(0, ge=0)


class SyncPushResponse(BaseModel):
    revision: int
    updated_at: datetime | None = None
    unchanged: bool = False  # Identical content was already stored


class SyncDataResponse(BaseModel):
    data: DatasetData
    version: str
    revision: int
    updated_at: datetime | None = None


# =============================================================================
# Backup Models
# =============================================================================


class BackupCreateRequest(BaseModel):
    """Backup upload. version and data are validated in the route (400, not 422)."""

    id: str | None = None
    version: str | None = None
    data: dict[str, Any] | None = None
    created_at: datetime | None = None


class BackupResponse(BaseModel):
    id: str
    user_id: str
    version: str
    created_at: datetime
    data: dict[str, Any]


class PruneResponse(BaseModel):
    ok: bool = True
    deleted: int


# =============================================================================
# Service Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str  # "healthy" or "degraded"
    database: str
    max_payload_bytes: int
