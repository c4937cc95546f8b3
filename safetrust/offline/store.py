"""Durable on-device store for the offline action queue and cache snapshots."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy import delete, func, select, update

from safetrust.core.logging import get_logger
from safetrust.db.base import LocalBase
from safetrust.db.session import Database
from safetrust.offline.models import (
    CACHE_MODELS,
    ActionStatus,
    ActionType,
    EntityType,
    OfflineAction,
    SyncMetadata,
)

logger = get_logger(__name__)

MAX_BACKOFF_SECONDS = 3600
ACTIONS_SYNC_KEY = "offline_actions"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_next_attempt(retry_count: int, base_seconds: float, now: datetime) -> datetime:
    """
    Calculate next attempt time with exponential backoff.

    Args:
        retry_count: Retry count after the failure being recorded (>= 1)
        base_seconds: Delay before the first retry; 0 disables backoff
        now: Current time

    Returns:
        Earliest time the action is picked up again
    """
    if base_seconds <= 0:
        return now
    delay = min(base_seconds * 2 ** max(retry_count - 1, 0), MAX_BACKOFF_SECONDS)
    return now + timedelta(seconds=delay)


class OfflineStore:
    """SQLite-backed store. One instance per device database file."""

    def __init__(
        self,
        db_path: str,
        retry_backoff_seconds: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db_path = db_path
        self.retry_backoff_seconds = retry_backoff_seconds
        self._clock = clock or _utcnow
        self._database = Database(f"sqlite+aiosqlite:///{db_path}", base=LocalBase)

    @property
    def is_open(self) -> bool:
        return self._database.is_open

    async def open(self) -> None:
        await self._database.open(create_tables=True)
        logger.info("Offline store opened", extra={"db_path": self.db_path})

    async def close(self) -> None:
        await self._database.close()

    def _session(self):
        return self._database.session_factory()

    # ------------------------------------------------------------------
    # Action queue
    # ------------------------------------------------------------------

    async def insert_action(
        self,
        action_type: ActionType | str,
        entity: EntityType | str,
        data: dict[str, Any] | None = None,
        entity_id: str | None = None,
        max_retries: int = 3,
    ) -> OfflineAction:
        """Persist a new PENDING action."""
        action = OfflineAction(
            id=f"action_{uuid4().hex}",
            type=ActionType(action_type).value,
            entity=EntityType(entity).value,
            entity_id=entity_id,
            data=data or {},
            created_at=self._clock(),
            retry_count=0,
            max_retries=max_retries,
            status=ActionStatus.PENDING.value,
        )
        async with self._session() as db:
            db.add(action)
            await db.commit()
        return action

    async def fetch_pending(self) -> list[OfflineAction]:
        """Due PENDING actions, oldest first."""
        now = self._clock()
        async with self._session() as db:
            result = await db.execute(
                select(OfflineAction)
                .where(
                    OfflineAction.status == ActionStatus.PENDING.value,
                    (OfflineAction.next_attempt_at.is_(None)) | (OfflineAction.next_attempt_at <= now),
                )
                .order_by(OfflineAction.created_at.asc(), OfflineAction.seq.asc())
            )
            return list(result.scalars().all())

    async def mark_syncing(self, action_id: str) -> bool:
        """PENDING -> SYNCING. False if the action is no longer pending."""
        async with self._session() as db:
            result = await db.execute(
                update(OfflineAction)
                .where(
                    OfflineAction.id == action_id,
                    OfflineAction.status == ActionStatus.PENDING.value,
                )
                .values(status=ActionStatus.SYNCING.value)
            )
            await db.commit()
            return result.rowcount == 1

    async def mark_completed(self, action_id: str) -> None:
        async with self._session() as db:
            await db.execute(
                update(OfflineAction)
                .where(OfflineAction.id == action_id)
                .values(status=ActionStatus.COMPLETED.value, last_error=None)
            )
            await db.commit()

    async def record_failure(self, action_id: str, error: str, retryable: bool = True) -> ActionStatus:
        """
        Record a failed delivery.

        Retryable failures increment the retry count and go back to PENDING
        until the count reaches max_retries, then FAILED. Non-retryable
        failures go straight to FAILED without touching the count.
        """
        now = self._clock()
        async with self._session() as db:
            action = (
                await db.execute(select(OfflineAction).where(OfflineAction.id == action_id))
            ).scalar_one()

            action.last_error = error[:1000]  # Truncate to 1000 chars
            if retryable:
                action.retry_count += 1

            if retryable and action.retry_count < action.max_retries:
                action.status = ActionStatus.PENDING.value
                action.next_attempt_at = calculate_next_attempt(
                    action.retry_count, self.retry_backoff_seconds, now
                )
                logger.warning(
                    f"Scheduling retry {action.retry_count} for action {action.id} at {action.next_attempt_at}"
                )
            else:
                action.status = ActionStatus.FAILED.value
                logger.error(
                    f"Action {action.id} failed permanently after {action.retry_count} retries: {error}"
                )

            await db.commit()
            return ActionStatus(action.status)

    async def reset_stale_syncing(self) -> int:
        """Return SYNCING rows left by an interrupted process to PENDING."""
        async with self._session() as db:
            result = await db.execute(
                update(OfflineAction)
                .where(OfflineAction.status == ActionStatus.SYNCING.value)
                .values(status=ActionStatus.PENDING.value)
            )
            await db.commit()
            return result.rowcount

    async def get_action(self, action_id: str) -> OfflineAction | None:
        async with self._session() as db:
            result = await db.execute(select(OfflineAction).where(OfflineAction.id == action_id))
            return result.scalar_one_or_none()

    async def list_actions(self, status: ActionStatus | None = None) -> list[OfflineAction]:
        async with self._session() as db:
            stmt = select(OfflineAction).order_by(OfflineAction.created_at.asc(), OfflineAction.seq.asc())
            if status is not None:
                stmt = stmt.where(OfflineAction.status == ActionStatus(status).value)
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count_by_status(self) -> dict[ActionStatus, int]:
        async with self._session() as db:
            result = await db.execute(
                select(OfflineAction.status, func.count()).group_by(OfflineAction.status)
            )
            counts = {status: 0 for status in ActionStatus}
            for status, count in result.all():
                counts[ActionStatus(status)] = count
            return counts

    async def purge_completed(self) -> int:
        """Delete COMPLETED actions. FAILED rows are kept for inspection."""
        async with self._session() as db:
            result = await db.execute(
                delete(OfflineAction).where(OfflineAction.status == ActionStatus.COMPLETED.value)
            )
            await db.commit()
            return result.rowcount

    # ------------------------------------------------------------------
    # Cache snapshots
    # ------------------------------------------------------------------

    async def replace_cache(self, entity: EntityType | str, items: list[dict[str, Any]]) -> int:
        """Replace the snapshot for an entity type in one transaction."""
        model = CACHE_MODELS[EntityType(entity)]
        missing_id = [i for i, item in enumerate(items) if item.get("id") in (None, "")]
        if missing_id:
            raise ValueError(f"Cached items must have an id (positions {missing_id})")

        now = self._clock()
        async with self._session() as db:
            await db.execute(delete(model))
            for position, item in enumerate(items):
                db.add(
                    model(
                        id=str(item["id"]),
                        data=item,
                        position=position,
                        updated_at=item.get("updatedAt") or item.get("updated_at"),
                        cached_at=now,
                    )
                )
            await db.commit()
        return len(items)

    async def get_cached(self, entity: EntityType | str) -> list[dict[str, Any]]:
        model = CACHE_MODELS[EntityType(entity)]
        async with self._session() as db:
            result = await db.execute(select(model).order_by(model.position.asc()))
            return [row.data for row in result.scalars().all()]

    async def clear_cache(self) -> None:
        """Drop every snapshot and the COMPLETED actions."""
        async with self._session() as db:
            for model in CACHE_MODELS.values():
                await db.execute(delete(model))
            await db.execute(
                delete(OfflineAction).where(OfflineAction.status == ActionStatus.COMPLETED.value)
            )
            await db.commit()

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    async def set_last_sync(
        self,
        entity: str,
        when: datetime | None = None,
        sync_token: str | None = None,
    ) -> None:
        async with self._session() as db:
            row = await db.get(SyncMetadata, entity)
            if row is None:
                row = SyncMetadata(entity=entity)
                db.add(row)
            row.last_sync_time = when or self._clock()
            if sync_token is not None:
                row.sync_token = sync_token
            await db.commit()

    async def get_last_sync(self, entity: str) -> datetime | None:
        async with self._session() as db:
            row = await db.get(SyncMetadata, entity)
            if row is None or row.last_sync_time is None:
                return None
            last_sync = row.last_sync_time
            # SQLite drops tzinfo; values are always written in UTC
            if last_sync.tzinfo is None:
                last_sync = last_sync.replace(tzinfo=timezone.utc)
            return last_sync
