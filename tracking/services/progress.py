"""
Crash-safe persistence of the in-progress trip.

Every accepted sample mirrors the active trip twice: into the Redis cache
(fast, may be lost) and into the durable ``trips`` collection as a
``status="active"`` record. On process start the durable copy tells us
whether a trip was interrupted and whether it can be resumed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import ValidationError as PydanticValidationError

from config import (
    ORPHAN_GRACE_MS,
    PERSIST_MAX_ATTEMPTS,
    PERSIST_RETRY_DELAY_SECONDS,
    STATIONARY_DURATION_MS,
    USER_ID,
)
from core.http.retry import retry_fixed
from date_utils import now_ms
from db.models import Trip
from tracking.services.live_trip_store import (
    clear_active_trip_snapshot,
    get_active_trip_snapshot,
    save_active_trip_snapshot,
)
from trips.models import ActiveTrip, RecoveryReport, RecoveryState
from trips.services.trip_store import TripStore

logger = logging.getLogger(__name__)


class TripProgressPersistor:
    """Mirror the active trip into the volatile cache and the local trip store."""

    def __init__(
        self,
        *,
        user_id: str = USER_ID,
        max_attempts: int = PERSIST_MAX_ATTEMPTS,
        retry_delay: float = PERSIST_RETRY_DELAY_SECONDS,
        orphan_grace_ms: int = ORPHAN_GRACE_MS,
        resume_window_ms: int = STATIONARY_DURATION_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.user_id = user_id
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._orphan_grace_ms = orphan_grace_ms
        self._resume_window_ms = resume_window_ms
        self._clock = clock

    async def persist(self, trip: ActiveTrip) -> bool:
        """
        Write ``trip`` to the cache, then to the durable store.

        Cache failures are non-critical. Durable writes are retried; once the
        attempts are exhausted a critical log is emitted and ``False`` is
        returned so tracking can carry on.
        """
        try:
            await save_active_trip_snapshot(trip.model_dump(mode="json"))
        except Exception as exc:
            logger.warning("Active trip cache write failed for %s: %s", trip.id, exc)

        try:
            await self._write_durable(trip)
        except Exception:
            logger.critical(
                "Failed to persist trip %s after %d attempts; progress since the "
                "last successful write is at risk",
                trip.id,
                self._max_attempts,
                exc_info=True,
            )
            return False
        return True

    async def _write_durable(self, trip: ActiveTrip) -> None:
        @retry_fixed(attempts=self._max_attempts, delay=self._retry_delay)
        async def _upsert() -> Trip:
            return await TripStore.save_active(trip, self.user_id)

        await _upsert()

    async def load(self) -> ActiveTrip | None:
        """Return the in-progress trip, cache first, durable store as fallback."""
        try:
            snapshot = await get_active_trip_snapshot()
        except Exception as exc:
            logger.warning("Active trip cache read failed: %s", exc)
            snapshot = None

        if snapshot:
            try:
                cached = ActiveTrip.model_validate(snapshot)
            except PydanticValidationError:
                logger.warning("Discarding malformed active trip snapshot")
            else:
                if await self._still_active(cached):
                    return cached

        record = await TripStore.get_active(self.user_id)
        if record is None:
            return None
        return record.to_active_trip()

    async def _still_active(self, trip: ActiveTrip) -> bool:
        """A snapshot whose durable record was already completed is stale."""
        record = await TripStore.get(trip.id)
        if record is None or record.is_active:
            return True
        logger.warning("Dropping stale cache snapshot of finished trip %s", trip.id)
        try:
            await clear_active_trip_snapshot(trip.id)
        except Exception as exc:
            logger.warning("Active trip cache clear failed for %s: %s", trip.id, exc)
        return False

    async def clear(self, trip_id: str, *, remove_durable: bool = False) -> None:
        """
        Drop the cached snapshot for ``trip_id``.

        With ``remove_durable`` the ``status="active"`` record is deleted too;
        completed records are never touched here.
        """
        try:
            await clear_active_trip_snapshot(trip_id)
        except Exception as exc:
            logger.warning("Active trip cache clear failed for %s: %s", trip_id, exc)

        if not remove_durable:
            return
        record = await TripStore.get(trip_id)
        if record is not None and record.is_active:
            await TripStore.delete(trip_id)

    async def recover_on_startup(self, feed_running: bool) -> RecoveryReport:
        """
        Classify a trip left behind by a previous process.

        The trip is resumable only when the sample feed is running and its
        last fix is within the stationary window; a trip quiet for longer would
        already have ended, so it is orphaned instead. Orphans idle for longer
        than the grace window are flagged for the user's attention. Nothing is
        deleted here.
        """
        try:
            trip = await self.load()
        except Exception:
            logger.exception("Could not load in-progress trip during recovery")
            return RecoveryReport()

        if trip is None:
            return RecoveryReport()

        last_seen = trip.last_update or trip.start_time
        age_ms = max(0, self._clock() - last_seen)

        if feed_running and age_ms <= self._resume_window_ms:
            logger.info("Resuming trip %s (%.2f mi)", trip.id, trip.distance)
            return RecoveryReport(
                state=RecoveryState.RESUMABLE,
                trip=trip,
                age_ms=age_ms,
            )

        needs_attention = age_ms > self._orphan_grace_ms
        logger.warning(
            "Found orphaned trip %s (%.2f mi, idle %d ms, needs_attention=%s)",
            trip.id,
            trip.distance,
            age_ms,
            needs_attention,
        )
        return RecoveryReport(
            state=RecoveryState.ORPHANED,
            trip=trip,
            age_ms=age_ms,
            needs_attention=needs_attention,
        )


__all__ = ["TripProgressPersistor"]
