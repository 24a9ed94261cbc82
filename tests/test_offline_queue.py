from __future__ import annotations

import pytest

from date_utils import ms_to_datetime
from db.models import QueuedOperation
from sync.errors import SyncError, SyncErrorCategory
from sync.services.offline_queue import MAX_RETRY_ATTEMPTS, OfflineQueue

T0 = 1_700_000_000_000


def _snapshot(trip_id: str) -> dict[str, object]:
    return {"trip_id": trip_id, "start_time": T0, "end_time": T0 + 60_000}


@pytest.mark.asyncio
async def test_enqueue_dedupes_by_type_and_trip(beanie_db) -> None:
    first = await OfflineQueue.enqueue("upload", _snapshot("a"), now=T0)
    again = await OfflineQueue.enqueue("upload", _snapshot("a"), now=T0 + 1)
    await OfflineQueue.enqueue("delete", _snapshot("a"), now=T0 + 2)

    assert again.operation_id == first.operation_id
    assert first.operation_id == f"upload_a_{T0}"
    assert first.attempts == 0
    assert await QueuedOperation.find_all().count() == 2


@pytest.mark.asyncio
async def test_dequeue_all_returns_insertion_order(beanie_db) -> None:
    await OfflineQueue.enqueue("upload", _snapshot("second"), now=T0 + 10)
    await OfflineQueue.enqueue("upload", _snapshot("first"), now=T0)
    await OfflineQueue.enqueue("delete", _snapshot("third"), now=T0 + 20)

    operations = await OfflineQueue.dequeue_all()

    assert [op.trip["trip_id"] for op in operations] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_backoff_doubles_with_each_attempt(beanie_db) -> None:
    operation = await OfflineQueue.enqueue("upload", _snapshot("a"), now=T0)
    assert OfflineQueue.is_eligible(operation, T0) is True

    error = SyncError(category=SyncErrorCategory.NETWORK, message="offline", retryable=True)
    await OfflineQueue.record_attempt(operation, error, now=T0)

    assert operation.attempts == 1
    assert operation.last_error["category"] == "network"
    assert OfflineQueue.is_eligible(operation, T0 + 1_999) is False
    assert OfflineQueue.is_eligible(operation, T0 + 2_000) is True

    await OfflineQueue.record_attempt(operation, error, now=T0 + 2_000)
    assert OfflineQueue.is_eligible(operation, T0 + 5_999) is False
    assert OfflineQueue.is_eligible(operation, T0 + 6_000) is True


@pytest.mark.asyncio
async def test_operation_at_ceiling_is_never_eligible(beanie_db) -> None:
    operation = await OfflineQueue.enqueue("upload", _snapshot("a"), now=T0)
    operation.attempts = MAX_RETRY_ATTEMPTS
    operation.last_attempt_at = ms_to_datetime(T0)

    assert OfflineQueue.is_eligible(operation, T0 + 10_000_000) is False


@pytest.mark.asyncio
async def test_status_and_clear_failed(beanie_db) -> None:
    await OfflineQueue.enqueue("upload", _snapshot("pending"), now=T0)
    failed = await OfflineQueue.enqueue("upload", _snapshot("failed"), now=T0 + 1)
    for attempt in range(MAX_RETRY_ATTEMPTS):
        await OfflineQueue.record_attempt(failed, now=T0 + attempt)

    status = await OfflineQueue.status()
    assert status.total == 2
    assert status.pending == 1
    assert status.failed == 1

    assert await OfflineQueue.clear_failed() == 1

    status = await OfflineQueue.status()
    assert status.total == 1
    assert status.failed == 0
    assert await OfflineQueue.queued_trip_ids() == {"pending"}
