"""
Offline sync and reconciliation engine.

One sync cycle:

1. Drain the offline queue, replaying eligible operations with backoff.
2. Upload completed local trips that are new or changed since their last
   sync, a batch at a time. Remote matches are found by time window and
   resolved last-write-wins on ``updated_at``.
3. Download the user's non-deleted remote trips into the local store.
4. Record the completion time.

Cycles, deletions and completion-triggered uploads share one lock so they
never interleave.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from config import SYNC_BATCH_SIZE, USER_ID
from core.exceptions import ResourceNotFoundError, ValidationError
from core.http.circuit_breaker import remote_store_breaker
from date_utils import ensure_utc, get_current_utc_time, now_ms, parse_timestamp
from db.models import TRIP_STATUS_COMPLETED, QueuedOperation, SyncState, Trip
from sync.errors import SyncError, categorize_error
from sync.models import PermanentFailure, SyncResult
from sync.services.offline_queue import MAX_RETRY_ATTEMPTS, OfflineQueue
from sync.services.remote_store import RemoteTripStore
from trips.models import CompletedTrip, TripDetailsUpdate, TripPurpose
from trips.services.trip_store import TripStore

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = "trip_sync"
UPLOADED = "uploaded"
SKIPPED = "skipped"


def trip_snapshot(trip: Trip) -> dict[str, Any]:
    """Queue-safe copy of a local trip."""
    return trip.model_dump(
        mode="json",
        exclude={"id", "revision_id", "location_points"},
    )


def trip_to_remote(trip: Trip | dict[str, Any], user_id: str) -> dict[str, Any]:
    """Remote ``trips`` row for a local trip or queued snapshot."""
    data = trip if isinstance(trip, dict) else trip.model_dump(mode="json")
    updated_at = parse_timestamp(data.get("updated_at")) or get_current_utc_time()
    return {
        "user_id": user_id,
        "start_location": data.get("start_location") or "",
        "end_location": data.get("end_location") or "",
        "start_latitude": data.get("start_latitude") or 0,
        "start_longitude": data.get("start_longitude") or 0,
        "end_latitude": data.get("end_latitude") or 0,
        "end_longitude": data.get("end_longitude") or 0,
        "distance": data.get("distance") or 0,
        "start_time": data.get("start_time"),
        "end_time": data.get("end_time"),
        "purpose": str(data.get("purpose") or TripPurpose.BUSINESS),
        "notes": data.get("notes") or "",
        "updated_at": updated_at.isoformat(timespec="milliseconds"),
        "is_deleted": False,
        "deleted_at": None,
    }


def _remote_updated_at(record: dict[str, Any]) -> datetime | None:
    return parse_timestamp(record.get("updated_at"))


def _deleted_keys(snapshots: list[dict[str, Any]]) -> tuple[set[str], set[tuple]]:
    remote_ids = {str(s["remote_id"]) for s in snapshots if s.get("remote_id")}
    windows = {(s.get("start_time"), s.get("end_time")) for s in snapshots}
    return remote_ids, windows


def _matches_deleted(
    record: dict[str, Any],
    deleted: tuple[set[str], set[tuple]],
) -> bool:
    remote_ids, windows = deleted
    if str(record.get("id")) in remote_ids:
        return True
    return (record.get("start_time"), record.get("end_time")) in windows


class SyncEngine:
    """Reconciles the local trip store with the remote trip store."""

    def __init__(
        self,
        remote: RemoteTripStore,
        *,
        user_id: str = USER_ID,
        batch_size: int = SYNC_BATCH_SIZE,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._remote = remote
        self.user_id = user_id
        self._batch_size = max(1, batch_size)
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def sync_trips(self) -> SyncResult:
        """Run one full sync cycle."""
        async with self._lock:
            result = SyncResult(started_at=get_current_utc_time())
            logger.info("Starting trip sync")

            await self._drain_queue(result)
            await self._upload_local_trips(result)

            try:
                result.downloaded = await self._download_remote_trips()
            except Exception as exc:
                result.error = categorize_error(exc)
                logger.warning("Remote download failed: %s", result.error.message)

            result.finished_at = get_current_utc_time()
            await self._record_completion(result)
            logger.info(
                "Trip sync finished: %d uploaded, %d skipped, %d downloaded, "
                "%d queued, %d drained, %d permanent failures",
                result.uploaded,
                result.skipped,
                result.downloaded,
                result.queued,
                result.drained,
                len(result.permanent_failures),
            )
            return result

    async def process_queue(self) -> SyncResult:
        """Drain the offline queue without uploading or downloading anything else."""
        async with self._lock:
            result = SyncResult(started_at=get_current_utc_time())
            await self._drain_queue(result)
            result.finished_at = get_current_utc_time()
            return result

    async def _record_completion(self, result: SyncResult) -> None:
        state = await SyncState.find_one({"key": SYNC_STATE_KEY})
        if state is None:
            state = SyncState(key=SYNC_STATE_KEY)
        if result.error is None:
            state.last_sync_at = result.finished_at
        state.last_result = result.model_dump(mode="json")
        await state.save()

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def _drain_queue(self, result: SyncResult) -> None:
        operations = await OfflineQueue.dequeue_all()
        for operation in operations:
            if operation.attempts >= MAX_RETRY_ATTEMPTS:
                result.needs_attention.append(operation.operation_id)
                continue

            now = self._clock()
            if not OfflineQueue.is_eligible(operation, now):
                continue

            try:
                await self._execute(operation)
            except Exception as exc:
                error = categorize_error(exc)
                await OfflineQueue.record_attempt(operation, error, now=now)
                if not error.retryable:
                    await OfflineQueue.remove(operation)
                    result.permanent_failures.append(
                        PermanentFailure(
                            trip_id=operation.trip.get("trip_id"),
                            operation_type=operation.type,
                            operation_id=operation.operation_id,
                            error=error,
                        ),
                    )
                    logger.error(
                        "Dropping %s (%s error): %s",
                        operation.operation_id,
                        error.category,
                        error.message,
                    )
                elif operation.attempts >= MAX_RETRY_ATTEMPTS:
                    result.needs_attention.append(operation.operation_id)
                else:
                    logger.info(
                        "Queued operation %s failed (attempt %d): %s",
                        operation.operation_id,
                        operation.attempts,
                        error.message,
                    )
                continue

            await OfflineQueue.remove(operation)
            result.drained += 1

    async def _execute(self, operation: QueuedOperation) -> None:
        if operation.type == "delete":
            await self._soft_delete_remote(operation.trip)
            return

        # upload and create both go through the idempotent upload path
        trip = await TripStore.get(str(operation.trip.get("trip_id")))
        if trip is None:
            logger.info(
                "Trip for %s no longer exists locally; dropping operation",
                operation.operation_id,
            )
            return
        await self.upload_trip(trip)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_trip(self, trip: Trip) -> str:
        """
        Push one local trip to the remote store.

        Returns ``"uploaded"`` or ``"skipped"`` (remote copy newer or deleted).
        Errors propagate to the caller for categorization.
        """
        existing = await self._remote.find_by_time_window(
            self.user_id,
            trip.start_time,
            trip.end_time,
        )
        record = trip_to_remote(trip, self.user_id)

        if existing is None:
            saved = await self._remote.insert(record)
            remote_id = saved.get("id")
            logger.info("Uploaded new trip %s", trip.trip_id)
        else:
            remote_id = str(existing.get("id"))
            if existing.get("is_deleted"):
                logger.info("Remote trip %s was deleted; not re-uploading", remote_id)
                return SKIPPED
            remote_updated = _remote_updated_at(existing)
            if remote_updated is not None and remote_updated > ensure_utc(trip.updated_at):
                logger.info("Remote copy of trip %s is newer; skipping", trip.trip_id)
                return SKIPPED
            await self._remote.update(remote_id, record)
            logger.info("Updated remote trip %s", remote_id)

        await TripStore.mark_synced(trip, str(remote_id) if remote_id else None)
        return UPLOADED

    async def _upload_isolated(self, trip: Trip, result: SyncResult) -> None:
        try:
            outcome = await self.upload_trip(trip)
        except Exception as exc:
            await self._handle_failure("upload", trip_snapshot(trip), exc, result)
            return
        if outcome == UPLOADED:
            result.uploaded += 1
        else:
            result.skipped += 1

    async def _upload_local_trips(self, result: SyncResult) -> None:
        pending = await TripStore.list_pending_upload(self.user_id)
        queued = await OfflineQueue.queued_trip_ids()
        pending = [trip for trip in pending if trip.trip_id not in queued]
        if not pending:
            return

        logger.info("Uploading %d local trips", len(pending))
        for start in range(0, len(pending), self._batch_size):
            batch = pending[start : start + self._batch_size]
            await asyncio.gather(
                *(self._upload_isolated(trip, result) for trip in batch),
            )

    async def upload_completed_trip(self, trip: CompletedTrip) -> SyncResult:
        """Upload a freshly completed trip (trip-completion hook)."""
        async with self._lock:
            result = SyncResult(started_at=get_current_utc_time())
            local = await TripStore.get(trip.id)
            if local is not None:
                await self._upload_isolated(local, result)
            result.finished_at = get_current_utc_time()
            return result

    async def _handle_failure(
        self,
        op_type: str,
        snapshot: dict[str, Any],
        exc: BaseException,
        result: SyncResult,
    ) -> SyncError:
        error = categorize_error(exc)
        trip_id = snapshot.get("trip_id")
        if error.retryable:
            await OfflineQueue.enqueue(op_type, snapshot, now=self._clock())
            result.queued += 1
            logger.warning(
                "%s of trip %s failed (%s); queued for retry",
                op_type,
                trip_id,
                error.category,
            )
        else:
            result.permanent_failures.append(
                PermanentFailure(trip_id=trip_id, operation_type=op_type, error=error),
            )
            logger.error(
                "%s of trip %s failed permanently (%s): %s",
                op_type,
                trip_id,
                error.category,
                error.message,
            )
        return error

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def _download_remote_trips(self) -> int:
        """Insert remote trips missing locally and replace stale local copies."""
        records = await self._remote.list_active(self.user_id)
        deleted = _deleted_keys(await OfflineQueue.pending_deletes())
        changed = 0
        for record in records:
            if _matches_deleted(record, deleted):
                logger.info(
                    "Remote trip %s has a queued delete; not restoring it",
                    record.get("id"),
                )
                continue
            try:
                if await self._apply_remote(record):
                    changed += 1
            except Exception:
                logger.exception("Could not apply remote trip %s", record.get("id"))
        if changed:
            logger.info("Applied %d remote trips locally", changed)
        return changed

    async def _apply_remote(self, record: dict[str, Any]) -> bool:
        start_time = record.get("start_time")
        end_time = record.get("end_time")
        if start_time is None:
            return False

        local = await TripStore.find_by_time_window(
            self.user_id,
            int(start_time),
            int(end_time) if end_time is not None else None,
        )
        remote_updated = _remote_updated_at(record) or get_current_utc_time()
        if local is not None:
            if local.is_active or remote_updated <= ensure_utc(local.updated_at):
                return False
            trip_id = local.trip_id
            points = list(local.location_points)
        else:
            trip_id = str(record.get("id"))
            points = []

        doc = Trip(
            trip_id=trip_id,
            user_id=self.user_id,
            status=TRIP_STATUS_COMPLETED,
            start_location=record.get("start_location") or "",
            end_location=record.get("end_location") or "",
            start_latitude=record.get("start_latitude") or 0.0,
            start_longitude=record.get("start_longitude") or 0.0,
            end_latitude=record.get("end_latitude"),
            end_longitude=record.get("end_longitude"),
            distance=record.get("distance") or 0.0,
            start_time=int(start_time),
            end_time=int(end_time) if end_time is not None else int(start_time),
            purpose=record.get("purpose") or TripPurpose.BUSINESS,
            notes=record.get("notes") or "",
            location_points=points,
        )
        saved = await TripStore.upsert(doc, updated_at=remote_updated)
        await TripStore.mark_synced(saved, str(record.get("id")))
        return True

    # ------------------------------------------------------------------
    # Deletion and edits
    # ------------------------------------------------------------------

    async def _soft_delete_remote(self, snapshot: dict[str, Any]) -> bool:
        remote_id = snapshot.get("remote_id")
        if not remote_id:
            existing = await self._remote.find_by_time_window(
                self.user_id,
                snapshot.get("start_time"),
                snapshot.get("end_time"),
            )
            if existing is None:
                return False
            remote_id = existing.get("id")
        await self._remote.soft_delete(str(remote_id))
        return True

    async def delete_trip(self, trip_id: str) -> dict[str, Any]:
        """
        Delete a trip locally and soft-delete its remote copy.

        A retryable remote failure queues a ``delete`` operation.

        Raises:
            ResourceNotFoundError: No local trip with ``trip_id``.
            ValidationError: The trip is still being tracked.
        """
        async with self._lock:
            trip = await TripStore.get(trip_id)
            if trip is None:
                msg = f"Trip {trip_id} not found"
                raise ResourceNotFoundError(msg)
            if trip.is_active:
                msg = "Stop the active trip before deleting it"
                raise ValidationError(msg)

            snapshot = trip_snapshot(trip)
            await TripStore.delete(trip_id)

            result = SyncResult()
            remote_status = "deleted"
            try:
                if not await self._soft_delete_remote(snapshot):
                    remote_status = "not_found"
            except Exception as exc:
                error = await self._handle_failure("delete", snapshot, exc, result)
                remote_status = "queued" if error.retryable else "failed"

            return {
                "status": "success",
                "deleted": True,
                "trip_id": trip_id,
                "remote": remote_status,
                "permanent_failures": [
                    failure.model_dump(mode="json")
                    for failure in result.permanent_failures
                ],
            }

    async def update_trip_details(
        self,
        trip_id: str,
        update: TripDetailsUpdate,
    ) -> Trip:
        """Edit purpose/notes; the next cycle uploads the change."""
        async with self._lock:
            trip = await TripStore.update_details(
                trip_id,
                purpose=update.purpose,
                notes=update.notes,
            )
        if trip is None:
            msg = f"Trip {trip_id} not found"
            raise ResourceNotFoundError(msg)
        return trip

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_last_sync_time(self) -> datetime | None:
        state = await SyncState.find_one({"key": SYNC_STATE_KEY})
        if state is None:
            return None
        return ensure_utc(state.last_sync_at)

    async def get_status(self) -> dict[str, Any]:
        state = await SyncState.find_one({"key": SYNC_STATE_KEY})
        queue = await OfflineQueue.status()
        last_sync = ensure_utc(state.last_sync_at) if state else None
        return {
            "running": self.running,
            "last_sync_at": last_sync.isoformat() if last_sync else None,
            "last_result": state.last_result if state else None,
            "queue": queue.model_dump(),
            "remote_circuit": remote_store_breaker.snapshot(),
        }

    @staticmethod
    async def clear_failed_operations() -> int:
        return await OfflineQueue.clear_failed()


__all__ = [
    "SyncEngine",
    "trip_snapshot",
    "trip_to_remote",
]
