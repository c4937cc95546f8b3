"""Offline queue status and action schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from safetrust.offline.models import ActionStatus, ActionType


class SyncStatus(BaseModel):
    """Snapshot reported to listeners and callers of get_status()."""

    is_online: bool
    last_sync_time: datetime | None = None
    pending_actions: int = 0
    failed_actions: int = 0
    is_syncing: bool = False
    sync_progress: float = Field(default=0.0, ge=0.0, le=1.0)


class FlushResult(BaseModel):
    """Outcome of one flush cycle."""

    skipped: bool = False
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class OfflineActionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: ActionType
    entity: str
    entity_id: str | None = None
    data: dict[str, Any]
    created_at: datetime
    retry_count: int
    max_retries: int
    status: ActionStatus
    last_error: str | None = None
    next_attempt_at: datetime | None = None
