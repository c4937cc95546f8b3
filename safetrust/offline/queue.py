"""
Write-behind queue for local mutations.

Actions are persisted first and replayed against the remote API whenever the
device is online. A flush cycle processes a snapshot of due actions strictly
oldest first; each action either completes, goes back to PENDING with a
backoff, or ends FAILED once its retries are used up. Remote errors never
escape a flush.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable

from safetrust.core.config import settings
from safetrust.core.logging import get_logger
from safetrust.offline.connectivity import ConnectivityMonitor
from safetrust.offline.models import ActionStatus, ActionType, EntityType, OfflineAction
from safetrust.offline.remote import RemoteAPI, UnsupportedActionError
from safetrust.offline.store import ACTIONS_SYNC_KEY, OfflineStore
from safetrust.schemas.offline import FlushResult, SyncStatus

logger = get_logger(__name__)

SyncListener = Callable[[SyncStatus], Awaitable[None] | None]


class OfflineQueue:
    """Offline action queue bound to one device store."""

    def __init__(
        self,
        store: OfflineStore,
        remote: RemoteAPI,
        connectivity: ConnectivityMonitor,
        *,
        max_retries: int | None = None,
        sync_interval: float | None = None,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.max_retries = max_retries if max_retries is not None else settings.OFFLINE_MAX_RETRIES
        self.sync_interval = sync_interval if sync_interval is not None else settings.OFFLINE_SYNC_INTERVAL_SECONDS

        self._listeners: list[SyncListener] = []
        self._is_syncing = False
        self._sync_progress = 0.0
        self._background: set[asyncio.Task] = set()
        self._timer: asyncio.Task | None = None

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if not self.store.is_open:
            await self.store.open()
        reset = await self.store.reset_stale_syncing()
        if reset:
            logger.warning(f"Returned {reset} interrupted actions to PENDING")

        self.connectivity.subscribe(self._on_connectivity_change)
        if self.sync_interval:
            self._timer = asyncio.create_task(self._periodic_flush(self.sync_interval))
        if self.connectivity.is_online:
            self._schedule_flush()

    async def close(self) -> None:
        self.connectivity.unsubscribe(self._on_connectivity_change)
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        await self.wait_idle()
        await self.store.close()

    async def wait_idle(self) -> None:
        """Wait for background flushes scheduled so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        action_type: ActionType | str,
        entity: EntityType | str,
        data: dict[str, Any] | None = None,
        entity_id: str | None = None,
        max_retries: int | None = None,
    ) -> str:
        """
        Persist a local mutation and return its id without waiting for the server.

        Raises:
            ValueError: unknown action type or entity, or an UPDATE/DELETE
                without an entity id
        """
        action_type = ActionType(action_type)
        entity = EntityType(entity)
        if action_type in (ActionType.UPDATE, ActionType.DELETE) and not entity_id:
            raise ValueError(f"{action_type.value} {entity.value} requires an entity id")

        action = await self.store.insert_action(
            action_type,
            entity,
            data=data,
            entity_id=entity_id,
            max_retries=max_retries if max_retries is not None else self.max_retries,
        )
        logger.info(
            f"Queued offline action: {action_type.value} {entity.value}",
            extra={"action_id": action.id},
        )
        await self._notify()

        if self.connectivity.is_online:
            self._schedule_flush()
        return action.id

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self) -> FlushResult:
        """
        Run one sync cycle over the due PENDING actions.

        Returns ``skipped=True`` without touching the store when a cycle is
        already running or the device is offline.
        """
        if self._is_syncing or not self.connectivity.is_online:
            return FlushResult(skipped=True)

        # No await between the check and the set
        self._is_syncing = True
        self._sync_progress = 0.0
        result = FlushResult()
        try:
            await self._notify()
            actions = await self.store.fetch_pending()
            total = len(actions)

            for index, action in enumerate(actions, start=1):
                outcome = await self._sync_action(action)
                if outcome is not None:
                    result.processed += 1
                    if outcome == ActionStatus.COMPLETED:
                        result.completed += 1
                    elif outcome == ActionStatus.PENDING:
                        result.retried += 1
                    else:
                        result.failed += 1
                self._sync_progress = index / total
                await self._notify()

            await self.store.set_last_sync(ACTIONS_SYNC_KEY)
            logger.info(
                f"Synced {result.completed}/{total} actions",
                extra=result.model_dump(),
            )
        finally:
            self._is_syncing = False
            self._sync_progress = 0.0
            await self._notify()
        return result

    async def _sync_action(self, action: OfflineAction) -> ActionStatus | None:
        """Replay one action. Returns its new status, or None if it was claimed elsewhere."""
        if not await self.store.mark_syncing(action.id):
            return None

        try:
            operation = self.remote.operation_for(action.entity, action.type)
            await operation(action.entity_id, action.data or {})
        except UnsupportedActionError as e:
            logger.error(f"Failed to sync action {action.id}: {e}")
            return await self.store.record_failure(action.id, str(e), retryable=False)
        except Exception as e:
            logger.warning(f"Failed to sync action {action.id}: {e}")
            return await self.store.record_failure(action.id, f"{type(e).__name__}: {e}")

        await self.store.mark_completed(action.id)
        return ActionStatus.COMPLETED

    def _schedule_flush(self) -> None:
        task = asyncio.create_task(self._background_flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_flush(self) -> None:
        try:
            await self.flush()
        except Exception as e:
            logger.error(f"Background sync failed: {e}", exc_info=True)

    async def _periodic_flush(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._background_flush()

    async def _on_connectivity_change(self, online: bool) -> None:
        await self._notify()
        if online and not self._is_syncing:
            self._schedule_flush()

    # ------------------------------------------------------------------
    # Status and listeners
    # ------------------------------------------------------------------

    async def get_status(self) -> SyncStatus:
        counts = await self.store.count_by_status()
        return SyncStatus(
            is_online=self.connectivity.is_online,
            last_sync_time=await self.store.get_last_sync(ACTIONS_SYNC_KEY),
            pending_actions=counts[ActionStatus.PENDING] + counts[ActionStatus.SYNCING],
            failed_actions=counts[ActionStatus.FAILED],
            is_syncing=self._is_syncing,
            sync_progress=self._sync_progress,
        )

    def subscribe(self, listener: SyncListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SyncListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self) -> None:
        if not self._listeners:
            return
        status = await self.get_status()
        for listener in list(self._listeners):
            try:
                result = listener(status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Sync listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def cache_list(self, entity: EntityType | str, items: list[dict[str, Any]]) -> None:
        """Replace the local snapshot for an entity type."""
        count = await self.store.replace_cache(entity, items)
        await self.store.set_last_sync(EntityType(entity).value)
        logger.debug(f"Cached {count} {EntityType(entity).value}")

    async def get_cached(self, entity: EntityType | str) -> list[dict[str, Any]]:
        return await self.store.get_cached(entity)

    async def refresh_cache(self, entity: EntityType | str) -> list[dict[str, Any]]:
        """
        Pull the server listing for an entity type into the cache.

        Remote errors propagate; the existing snapshot is left untouched.
        """
        items = await self.remote.list_entities(entity)
        await self.cache_list(entity, items)
        return items

    async def get_last_sync(self, entity: EntityType | str) -> datetime | None:
        return await self.store.get_last_sync(EntityType(entity).value)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def list_actions(self, status: ActionStatus | None = None) -> list[OfflineAction]:
        return await self.store.list_actions(status)

    async def purge_completed(self) -> int:
        purged = await self.store.purge_completed()
        logger.info(f"Purged {purged} completed actions")
        await self._notify()
        return purged

    async def clear_cache(self) -> None:
        await self.store.clear_cache()
        await self._notify()
