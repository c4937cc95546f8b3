"""Device-local tables: offline action queue, cache snapshots, sync metadata."""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from safetrust.db.base import LocalBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionType(str, PyEnum):
    """Mutation kinds."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ActionStatus(str, PyEnum):
    """Queue states. COMPLETED and FAILED are terminal."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EntityType(str, PyEnum):
    """Entity types that can be queued and cached."""

    DOCUMENTS = "documents"
    INCIDENTS = "incidents"
    TRAININGS = "trainings"
    WORKFLOW_TASKS = "workflow_tasks"


class OfflineAction(LocalBase):
    """One queued local mutation awaiting remote confirmation."""

    __tablename__ = "offline_actions"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # enqueue order tiebreak
    id = Column(String(64), nullable=False, unique=True)
    type = Column(String(10), nullable=False)
    entity = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    status = Column(String(10), nullable=False, default=ActionStatus.PENDING.value)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_offline_actions_status_created", "status", "created_at"),)


class CachedEntityMixin:
    """Columns shared by every cache snapshot table."""

    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # order of the server listing
    updated_at = Column(String(40), nullable=True)  # server timestamp, as received
    cached_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CachedDocument(CachedEntityMixin, LocalBase):
    __tablename__ = "cached_documents"


class CachedIncident(CachedEntityMixin, LocalBase):
    __tablename__ = "cached_incidents"


class CachedTraining(CachedEntityMixin, LocalBase):
    __tablename__ = "cached_trainings"


class CachedWorkflowTask(CachedEntityMixin, LocalBase):
    __tablename__ = "cached_workflow_tasks"


CACHE_MODELS: dict[EntityType, type[CachedEntityMixin]] = {
    EntityType.DOCUMENTS: CachedDocument,
    EntityType.INCIDENTS: CachedIncident,
    EntityType.TRAININGS: CachedTraining,
    EntityType.WORKFLOW_TASKS: CachedWorkflowTask,
}


class SyncMetadata(LocalBase):
    """Last successful sync per entity type (plus one row for the action queue)."""

    __tablename__ = "sync_metadata"

    entity = Column(String(32), primary_key=True)
    last_sync_time = Column(DateTime(timezone=True), nullable=True)
    sync_token = Column(String(255), nullable=True)
