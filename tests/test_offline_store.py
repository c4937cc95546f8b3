"""Tests for the device-local offline store."""

from datetime import timedelta

import pytest

from safetrust.offline import ActionStatus, ActionType, EntityType, OfflineStore
from safetrust.offline.store import MAX_BACKOFF_SECONDS, calculate_next_attempt


@pytest.mark.asyncio
async def test_insert_action_defaults(offline_store) -> None:
    action = await offline_store.insert_action(ActionType.CREATE, EntityType.INCIDENTS, {"title": "Slip"})

    stored = await offline_store.get_action(action.id)
    assert stored.id.startswith("action_")
    assert stored.status == ActionStatus.PENDING.value
    assert stored.retry_count == 0
    assert stored.max_retries == 3
    assert stored.data == {"title": "Slip"}


@pytest.mark.asyncio
async def test_fetch_pending_oldest_first(offline_store, clock) -> None:
    """Test that actions come back in creation order, ties broken by insertion."""
    first = await offline_store.insert_action("CREATE", "documents", {"n": 1})
    second = await offline_store.insert_action("CREATE", "documents", {"n": 2})
    clock.advance(seconds=5)
    third = await offline_store.insert_action("UPDATE", "documents", {"n": 3}, entity_id="d1")

    pending = await offline_store.fetch_pending()

    assert [a.id for a in pending] == [first.id, second.id, third.id]


@pytest.mark.asyncio
async def test_mark_syncing_only_from_pending(offline_store) -> None:
    action = await offline_store.insert_action("CREATE", "documents", {})

    assert await offline_store.mark_syncing(action.id) is True
    assert await offline_store.mark_syncing(action.id) is False
    assert await offline_store.fetch_pending() == []


@pytest.mark.asyncio
async def test_record_failure_retries_then_fails(offline_store) -> None:
    """Test that the third failure with the default ceiling is terminal."""
    action = await offline_store.insert_action("CREATE", "documents", {})

    statuses = []
    for _ in range(3):
        await offline_store.mark_syncing(action.id)
        statuses.append(await offline_store.record_failure(action.id, "HTTP 503"))

    assert statuses == [ActionStatus.PENDING, ActionStatus.PENDING, ActionStatus.FAILED]
    stored = await offline_store.get_action(action.id)
    assert stored.retry_count == 3
    assert stored.last_error == "HTTP 503"


@pytest.mark.asyncio
async def test_non_retryable_failure_keeps_retry_count(offline_store) -> None:
    action = await offline_store.insert_action("CREATE", "workflow_tasks", {})

    status = await offline_store.record_failure(action.id, "unsupported", retryable=False)

    stored = await offline_store.get_action(action.id)
    assert status == ActionStatus.FAILED
    assert stored.retry_count == 0


@pytest.mark.asyncio
async def test_last_error_is_truncated(offline_store) -> None:
    action = await offline_store.insert_action("CREATE", "documents", {})

    await offline_store.record_failure(action.id, "x" * 5000)

    assert len((await offline_store.get_action(action.id)).last_error) == 1000


@pytest.mark.asyncio
async def test_backoff_delays_next_attempt(tmp_path, clock) -> None:
    """Test that a retried action is not due again until its backoff elapses."""
    store = OfflineStore(str(tmp_path / "backoff.db"), retry_backoff_seconds=10, clock=clock)
    await store.open()
    try:
        action = await store.insert_action("CREATE", "documents", {})
        await store.mark_syncing(action.id)
        await store.record_failure(action.id, "timeout")

        assert await store.fetch_pending() == []
        clock.advance(seconds=9)
        assert await store.fetch_pending() == []
        clock.advance(seconds=1)
        assert [a.id for a in await store.fetch_pending()] == [action.id]
    finally:
        await store.close()


def test_calculate_next_attempt_exponential(clock) -> None:
    now = clock.now

    assert calculate_next_attempt(1, 2, now) == now + timedelta(seconds=2)
    assert calculate_next_attempt(2, 2, now) == now + timedelta(seconds=4)
    assert calculate_next_attempt(3, 2, now) == now + timedelta(seconds=8)
    assert calculate_next_attempt(30, 2, now) == now + timedelta(seconds=MAX_BACKOFF_SECONDS)
    assert calculate_next_attempt(3, 0, now) == now


@pytest.mark.asyncio
async def test_count_by_status(offline_store) -> None:
    a = await offline_store.insert_action("CREATE", "documents", {})
    await offline_store.insert_action("CREATE", "documents", {})
    await offline_store.mark_syncing(a.id)
    await offline_store.mark_completed(a.id)

    counts = await offline_store.count_by_status()

    assert counts[ActionStatus.PENDING] == 1
    assert counts[ActionStatus.COMPLETED] == 1
    assert counts[ActionStatus.FAILED] == 0


@pytest.mark.asyncio
async def test_purge_completed_keeps_failed(offline_store) -> None:
    done = await offline_store.insert_action("CREATE", "documents", {})
    failed = await offline_store.insert_action("CREATE", "documents", {})
    await offline_store.mark_completed(done.id)
    await offline_store.record_failure(failed.id, "boom", retryable=False)

    assert await offline_store.purge_completed() == 1
    assert await offline_store.get_action(done.id) is None
    assert (await offline_store.get_action(failed.id)).status == ActionStatus.FAILED.value


@pytest.mark.asyncio
async def test_reset_stale_syncing(offline_store) -> None:
    action = await offline_store.insert_action("CREATE", "documents", {})
    await offline_store.mark_syncing(action.id)

    assert await offline_store.reset_stale_syncing() == 1
    assert [a.id for a in await offline_store.fetch_pending()] == [action.id]


@pytest.mark.asyncio
async def test_replace_cache_keeps_order_and_replaces(offline_store) -> None:
    await offline_store.replace_cache("documents", [{"id": "old", "title": "Old"}])

    items = [{"id": "b", "title": "B"}, {"id": "a", "title": "A", "updatedAt": "2024-06-01T00:00:00Z"}]
    assert await offline_store.replace_cache(EntityType.DOCUMENTS, items) == 2

    assert await offline_store.get_cached("documents") == items
    assert await offline_store.get_cached("incidents") == []


@pytest.mark.asyncio
async def test_replace_cache_rejects_items_without_id(offline_store) -> None:
    """Test that a bad batch leaves the previous snapshot untouched."""
    await offline_store.replace_cache("incidents", [{"id": "i1"}])

    with pytest.raises(ValueError):
        await offline_store.replace_cache("incidents", [{"id": "i2"}, {"title": "no id"}])

    assert await offline_store.get_cached("incidents") == [{"id": "i1"}]


@pytest.mark.asyncio
async def test_clear_cache(offline_store) -> None:
    await offline_store.replace_cache("trainings", [{"id": "t1"}])
    done = await offline_store.insert_action("CREATE", "trainings", {})
    pending = await offline_store.insert_action("CREATE", "trainings", {})
    await offline_store.mark_completed(done.id)

    await offline_store.clear_cache()

    assert await offline_store.get_cached("trainings") == []
    assert await offline_store.get_action(done.id) is None
    assert await offline_store.get_action(pending.id) is not None


@pytest.mark.asyncio
async def test_last_sync_round_trip(offline_store, clock) -> None:
    assert await offline_store.get_last_sync("documents") is None

    await offline_store.set_last_sync("documents", sync_token="tok-1")

    assert await offline_store.get_last_sync("documents") == clock.now


@pytest.mark.asyncio
async def test_store_survives_reopen(tmp_path, clock) -> None:
    """Test that queued actions and cache persist across restarts."""
    path = str(tmp_path / "persist.db")
    store = OfflineStore(path, clock=clock)
    await store.open()
    action = await store.insert_action("DELETE", "incidents", {}, entity_id="i9")
    await store.replace_cache("incidents", [{"id": "i9"}])
    await store.close()

    reopened = OfflineStore(path, clock=clock)
    await reopened.open()
    try:
        assert [a.id for a in await reopened.fetch_pending()] == [action.id]
        assert await reopened.get_cached("incidents") == [{"id": "i9"}]
    finally:
        await reopened.close()
