"""
Offline operation queue.

Remote-store operations that failed with a retryable error are parked in the
``sync_queue`` collection and replayed by the sync engine with exponential
backoff. Operations that reach ``MAX_RETRY_ATTEMPTS`` stay queued (reported as
failed) until the user clears them.
"""

from __future__ import annotations

import logging
from typing import Any

from config import SYNC_INITIAL_DELAY_MS
from date_utils import datetime_to_ms, ms_to_datetime, now_ms
from db.models import OperationType, QueuedOperation
from sync.errors import SyncError
from sync.models import QueueStatus

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3


def build_operation_id(op_type: str, trip_id: str, ts_ms: int) -> str:
    return f"{op_type}_{trip_id}_{ts_ms}"


class OfflineQueue:
    """Persistent FIFO of remote trip operations."""

    @staticmethod
    async def enqueue(
        op_type: OperationType,
        trip: dict[str, Any],
        *,
        now: int | None = None,
    ) -> QueuedOperation:
        """
        Append an operation for ``trip`` with zero attempts.

        An operation of the same type already queued for the same trip is
        returned instead of adding a duplicate.
        """
        trip_id = str(trip.get("trip_id") or "")
        existing = await QueuedOperation.find_one(
            {"type": op_type, "trip.trip_id": trip_id},
        )
        if existing is not None:
            logger.debug("%s operation for trip %s already queued", op_type, trip_id)
            return existing

        ts = now if now is not None else now_ms()
        operation = QueuedOperation(
            operation_id=build_operation_id(op_type, trip_id, ts),
            type=op_type,
            trip=trip,
            created_at=ms_to_datetime(ts),
        )
        await operation.insert()
        logger.info("Queued %s operation for trip %s", op_type, trip_id)
        return operation

    @staticmethod
    async def dequeue_all() -> list[QueuedOperation]:
        """All queued operations in insertion order."""
        return await QueuedOperation.find_all().sort("+created_at", "+_id").to_list()

    @staticmethod
    async def status() -> QueueStatus:
        operations = await QueuedOperation.find_all().to_list()
        failed = sum(1 for op in operations if op.attempts >= MAX_RETRY_ATTEMPTS)
        return QueueStatus(
            total=len(operations),
            pending=len(operations) - failed,
            failed=failed,
        )

    @staticmethod
    def is_eligible(operation: QueuedOperation, now: int | None = None) -> bool:
        """Whether the backoff delay for the next attempt has elapsed."""
        if operation.attempts >= MAX_RETRY_ATTEMPTS:
            return False
        if operation.last_attempt_at is None:
            return True
        current = now if now is not None else now_ms()
        required = SYNC_INITIAL_DELAY_MS * 2**operation.attempts
        return current - datetime_to_ms(operation.last_attempt_at) >= required

    @staticmethod
    async def record_attempt(
        operation: QueuedOperation,
        error: SyncError | None = None,
        *,
        now: int | None = None,
    ) -> QueuedOperation:
        operation.attempts += 1
        operation.last_attempt_at = ms_to_datetime(now if now is not None else now_ms())
        operation.last_error = error.model_dump(mode="json") if error else None
        await operation.save()
        if operation.attempts >= MAX_RETRY_ATTEMPTS:
            logger.warning(
                "Operation %s reached the retry ceiling (%d attempts)",
                operation.operation_id,
                operation.attempts,
            )
        return operation

    @staticmethod
    async def remove(operation: QueuedOperation) -> None:
        await operation.delete()

    @staticmethod
    async def clear_failed() -> int:
        """Drop operations at the retry ceiling; returns how many were removed."""
        result = await QueuedOperation.find(
            {"attempts": {"$gte": MAX_RETRY_ATTEMPTS}},
        ).delete()
        removed = result.deleted_count if result else 0
        logger.info("Cleared %d failed sync operations", removed)
        return removed

    @staticmethod
    async def queued_trip_ids() -> set[str]:
        operations = await QueuedOperation.find_all().to_list()
        return {str(op.trip.get("trip_id")) for op in operations}

    @staticmethod
    async def pending_deletes() -> list[dict[str, Any]]:
        """Snapshots of trips deleted locally whose remote delete is still queued."""
        operations = await QueuedOperation.find({"type": "delete"}).to_list()
        return [op.trip for op in operations]


__all__ = [
    "MAX_RETRY_ATTEMPTS",
    "OfflineQueue",
    "build_operation_id",
]
