"""
Driving detection state machine.

Turns a stream of noisy location/speed samples into trip start and trip end
decisions. The detector owns the single active-trip slot; every change to it
goes through one ``asyncio.Lock`` so the sample consumer and the manual
trip-control endpoints never interleave.

States:
    Idle: no active trip.
    Tracking: an active trip exists. ``stopped_since`` marks the first slow
        sample of a possible stop; the trip ends once the vehicle has been
        slow for ``stationary_duration_ms``.

A completed trip is always saved to the local trip store before the slot is
cleared, so a crash between the two leaves a trip that is either still active
or already saved, never lost.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

from pydantic import ValidationError as PydanticValidationError

from config import (
    DRIVING_SPEED_THRESHOLD_MPH,
    MIN_TRIP_DISTANCE_MILES,
    NOISE_FLOOR_MILES,
    STATIONARY_DURATION_MS,
    USER_ID,
)
from core.exceptions import ValidationError
from core.http.geocoding import Geocoder, format_coordinates
from core.spatial import GeometryService
from date_utils import now_ms
from tracking.services.notifications import Notifier
from tracking.services.progress import TripProgressPersistor
from trips.models import (
    ActiveTrip,
    ActiveTripStatus,
    CompletedTrip,
    GeoSample,
    LocationPoint,
    RecoveryReport,
    RecoveryState,
    TripActionResult,
    TripActionStatus,
    TripPurpose,
)
from trips.services.trip_store import TripStore

logger = logging.getLogger(__name__)

AUTO_TRACKED_NOTES = "Auto-tracked trip"
OrphanAction = Literal["save", "discard"]
TripCompletedHook = Callable[[CompletedTrip], Awaitable[Any]]


class PurposeProvider(Protocol):
    async def default_purpose(self) -> TripPurpose: ...


class LocationProvider(Protocol):
    async def current_location(self) -> tuple[float, float] | None: ...


def new_trip_id() -> str:
    return uuid.uuid4().hex


class DrivingDetector:
    """Single-owner state machine over the active-trip slot."""

    def __init__(
        self,
        *,
        persistor: TripProgressPersistor,
        geocoder: Geocoder,
        purpose_provider: PurposeProvider | None = None,
        notifier: Notifier | None = None,
        location_provider: LocationProvider | None = None,
        on_trip_completed: TripCompletedHook | None = None,
        user_id: str = USER_ID,
        speed_threshold_mph: float = DRIVING_SPEED_THRESHOLD_MPH,
        stationary_duration_ms: int = STATIONARY_DURATION_MS,
        noise_floor_miles: float = NOISE_FLOOR_MILES,
        min_trip_distance_miles: float = MIN_TRIP_DISTANCE_MILES,
        collaborator_timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._persistor = persistor
        self._geocoder = geocoder
        self._purpose_provider = purpose_provider
        self._notifier = notifier
        self._location_provider = location_provider
        self._on_trip_completed = on_trip_completed
        self.user_id = user_id
        self.speed_threshold_mph = speed_threshold_mph
        self.stationary_duration_ms = stationary_duration_ms
        self.noise_floor_miles = noise_floor_miles
        self.min_trip_distance_miles = min_trip_distance_miles
        self._collaborator_timeout = collaborator_timeout
        self._clock = clock

        self._lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task] = set()

        self.active_trip: ActiveTrip | None = None
        self.driving_detected = False
        self.stopped_since: int | None = None
        self.last_movement_time: int | None = None
        self.last_speed = 0.0
        self.auto_tracking_enabled = True
        self._orphaned = False
        self._last_fix: tuple[float, float, int] | None = None

    # ------------------------------------------------------------------
    # Sample path
    # ------------------------------------------------------------------

    async def process_sample(
        self,
        sample: GeoSample | dict[str, Any] | None,
    ) -> TripActionResult | None:
        """
        Apply one sample to the state machine.

        Never raises: malformed samples and unexpected failures are logged and
        the sample is dropped. Returns the trip-control result when the sample
        started, completed or discarded a trip.
        """
        try:
            parsed = self._coerce_sample(sample)
            if parsed is None:
                return None
            async with self._lock:
                return await self._apply_sample(parsed)
        except Exception:
            logger.exception("Error processing location sample")
            return None

    @staticmethod
    def _coerce_sample(sample: GeoSample | dict[str, Any] | None) -> GeoSample | None:
        if sample is None:
            logger.warning("Ignoring empty location sample")
            return None
        if isinstance(sample, GeoSample):
            return sample
        try:
            return GeoSample.model_validate(sample)
        except PydanticValidationError as exc:
            logger.warning("Ignoring malformed location sample: %s", exc)
            return None

    async def _apply_sample(self, sample: GeoSample) -> TripActionResult | None:
        if not self.auto_tracking_enabled:
            return None

        if self.driving_detected and self.active_trip is None:
            logger.warning("Driving flag set without an active trip; resetting state")
            self._reset_state()

        speed = GeometryService.resolve_speed_mph(
            latitude=sample.latitude,
            longitude=sample.longitude,
            timestamp=sample.timestamp,
            device_speed_mps=sample.speed,
            previous=self._last_fix,
        )
        self._last_fix = (sample.latitude, sample.longitude, sample.timestamp)
        self.last_speed = speed
        now = sample.timestamp

        if speed >= self.speed_threshold_mph:
            if self.active_trip is None or self._orphaned:
                return await self._start_locked(
                    sample.latitude,
                    sample.longitude,
                    now,
                    notes=AUTO_TRACKED_NOTES,
                )
            self.stopped_since = None
            self.last_movement_time = now
            await self._record_movement(sample.latitude, sample.longitude, now)
            return None

        if self.active_trip is None or self._orphaned:
            return None

        await self._record_movement(sample.latitude, sample.longitude, now)

        if self.stopped_since is None:
            self.stopped_since = now
            logger.debug("Vehicle slowed to %.1f mph; stop timer started", speed)
            return None

        if now - self.stopped_since >= self.stationary_duration_ms:
            logger.info(
                "Stationary for %d ms; completing trip %s",
                now - self.stopped_since,
                self.active_trip.id,
            )
            latitude, longitude = await self._final_location(
                sample.latitude,
                sample.longitude,
            )
            return await self._complete_locked(latitude, longitude, now)
        return None

    async def _record_movement(self, latitude: float, longitude: float, ts: int) -> bool:
        trip = self.active_trip
        if trip is None:
            return False

        moved = GeometryService.haversine_distance(
            trip.last_latitude,
            trip.last_longitude,
            latitude,
            longitude,
        )
        if moved <= self.noise_floor_miles:
            return False

        trip.distance = round(trip.distance + moved, 2)
        trip.last_latitude = latitude
        trip.last_longitude = longitude
        trip.last_update = ts
        trip.location_points.append(
            LocationPoint(latitude=latitude, longitude=longitude, timestamp=ts),
        )
        await self._persistor.persist(trip)
        return True

    async def check_stationary(self, now: int | None = None) -> TripActionResult | None:
        """
        Re-check the stop timer without a new sample.

        Used by the optional watchdog when the sample source goes quiet. A trip
        with no pending stop is measured from its last update and ends there.
        """
        async with self._lock:
            trip = self.active_trip
            if trip is None or self._orphaned:
                return None
            current = now if now is not None else self._clock()
            if self.stopped_since is not None:
                reference, end_time = self.stopped_since, current
            else:
                reference = trip.last_update or trip.start_time
                end_time = reference
            if current - reference < self.stationary_duration_ms:
                return None
            logger.info("No movement for %d ms; completing trip %s", current - reference, trip.id)
            return await self._complete_locked(
                trip.last_latitude,
                trip.last_longitude,
                end_time,
            )

    # ------------------------------------------------------------------
    # Manual trip control
    # ------------------------------------------------------------------

    async def start_trip(
        self,
        latitude: float,
        longitude: float,
        *,
        start_location: str | None = None,
        purpose: TripPurpose | None = None,
        notes: str | None = None,
        timestamp: int | None = None,
    ) -> TripActionResult:
        """Start a trip unless one is already active (idempotent)."""
        is_valid, _ = GeometryService.validate_coordinate_pair([latitude, longitude])
        if not is_valid:
            msg = f"Invalid start coordinates: {latitude}, {longitude}"
            raise ValidationError(msg)
        async with self._lock:
            ts = timestamp if timestamp is not None else self._clock()
            self._last_fix = (latitude, longitude, ts)
            return await self._start_locked(
                latitude,
                longitude,
                ts,
                start_location=start_location,
                purpose=purpose,
                notes=notes,
            )

    async def stop_trip(
        self,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
        timestamp: int | None = None,
    ) -> TripActionResult:
        """
        Complete the active trip.

        Without explicit coordinates the location collaborator is asked for a
        final reading, falling back to the trip's last recorded point.
        """
        async with self._lock:
            trip = self.active_trip
            if trip is None:
                return TripActionResult(
                    status=TripActionStatus.NO_ACTIVE_TRIP,
                    message="No active trip to stop",
                )
            if self._orphaned:
                return await self._complete_orphan_locked()

            if latitude is None or longitude is None:
                latitude, longitude = await self._final_location(
                    trip.last_latitude,
                    trip.last_longitude,
                )
            end_time = timestamp if timestamp is not None else self._clock()
            return await self._complete_locked(latitude, longitude, end_time)

    def get_active_trip(self) -> ActiveTrip | None:
        if self.active_trip is None:
            return None
        return self.active_trip.model_copy(deep=True)

    def get_active_trip_status(
        self,
        *,
        feed_running: bool,
        orphan_grace_ms: int | None = None,
    ) -> ActiveTripStatus:
        trip = self.get_active_trip()
        if trip is None:
            return ActiveTripStatus(feed_running=feed_running)
        age_ms = max(0, self._clock() - (trip.last_update or trip.start_time))
        needs_attention = (
            self._orphaned
            and orphan_grace_ms is not None
            and age_ms > orphan_grace_ms
        )
        return ActiveTripStatus(
            trip=trip,
            feed_running=feed_running,
            orphaned=self._orphaned,
            age_ms=age_ms,
            needs_attention=needs_attention,
        )

    async def resolve_orphan(self, action: OrphanAction) -> TripActionResult:
        """Save or discard an orphaned trip found at startup."""
        if action not in ("save", "discard"):
            msg = f"Unknown orphan action: {action}"
            raise ValidationError(msg)

        async with self._lock:
            if self.active_trip is None or not self._orphaned:
                return TripActionResult(
                    status=TripActionStatus.NO_ACTIVE_TRIP,
                    message="No orphaned trip to resolve",
                )
            if action == "discard":
                trip = self.active_trip
                await self._persistor.clear(trip.id, remove_durable=True)
                self._reset_state()
                logger.info("Discarded orphaned trip %s", trip.id)
                return TripActionResult(
                    status=TripActionStatus.RESOLVED,
                    message="Orphaned trip discarded",
                )

            result = await self._complete_orphan_locked()
            if result.status == TripActionStatus.COMPLETED:
                return result.model_copy(
                    update={
                        "status": TripActionStatus.RESOLVED,
                        "message": "Orphaned trip saved",
                    },
                )
            return result

    async def set_auto_tracking(self, enabled: bool) -> TripActionResult | None:
        """
        Toggle automatic detection.

        Disabling it while a trip is being tracked completes and saves that
        trip first; a failed save keeps auto tracking on.
        """
        async with self._lock:
            if enabled:
                self.auto_tracking_enabled = True
                return None

            result = None
            trip = self.active_trip
            if trip is not None and not self._orphaned:
                result = await self._complete_locked(
                    trip.last_latitude,
                    trip.last_longitude,
                    self._clock(),
                )
                if not result.ok:
                    return result
            self.auto_tracking_enabled = False
            self.driving_detected = False
            self.stopped_since = None
            return result

    def restore(self, report: RecoveryReport) -> None:
        """Put a trip recovered at startup back into the slot."""
        if report.trip is None or report.state == RecoveryState.NONE:
            return
        trip = report.trip
        self.active_trip = trip
        self._orphaned = report.state == RecoveryState.ORPHANED
        self.driving_detected = not self._orphaned
        self.stopped_since = None
        self.last_movement_time = trip.last_update
        # speed for the first new sample is derived from the last stored fix
        self._last_fix = (
            (trip.last_latitude, trip.last_longitude, trip.last_update)
            if trip.last_update
            else None
        )

    # ------------------------------------------------------------------
    # Transitions (lock held)
    # ------------------------------------------------------------------

    async def _start_locked(
        self,
        latitude: float,
        longitude: float,
        ts: int,
        *,
        start_location: str | None = None,
        purpose: TripPurpose | None = None,
        notes: str | None = None,
    ) -> TripActionResult:
        if self.active_trip is not None and not self._orphaned:
            return TripActionResult(
                status=TripActionStatus.ALREADY_ACTIVE,
                message="A trip is already being tracked",
                active_trip=self.get_active_trip(),
            )

        if self._orphaned:
            orphan_result = await self._complete_orphan_locked()
            if orphan_result.status == TripActionStatus.SAVE_FAILED:
                return orphan_result

        if not start_location:
            start_location = await self._reverse_geocode(latitude, longitude)
        if purpose is None:
            purpose = await self._default_purpose()

        trip = ActiveTrip(
            id=new_trip_id(),
            start_location=start_location,
            start_latitude=latitude,
            start_longitude=longitude,
            start_time=ts,
            purpose=purpose,
            notes=notes,
            distance=0.0,
            last_latitude=latitude,
            last_longitude=longitude,
            location_points=[
                LocationPoint(latitude=latitude, longitude=longitude, timestamp=ts),
            ],
            last_update=ts,
        )
        self.active_trip = trip
        self._orphaned = False
        self.driving_detected = True
        self.stopped_since = None
        self.last_movement_time = ts
        await self._persistor.persist(trip)

        logger.info("Trip %s started at %s", trip.id, start_location)
        if self._notifier is not None:
            self._spawn(self._notifier.trip_started(trip.model_copy(deep=True)))
        return TripActionResult(
            status=TripActionStatus.STARTED,
            message="Trip started",
            active_trip=self.get_active_trip(),
        )

    async def _complete_locked(
        self,
        latitude: float,
        longitude: float,
        end_time: int,
    ) -> TripActionResult:
        trip = self.active_trip
        if trip is None:
            return TripActionResult(
                status=TripActionStatus.NO_ACTIVE_TRIP,
                message="No active trip to stop",
            )

        if trip.distance < self.min_trip_distance_miles:
            await self._persistor.clear(trip.id, remove_durable=True)
            self._reset_state()
            logger.info(
                "Discarded trip %s: %.2f mi is below the %.2f mi minimum",
                trip.id,
                trip.distance,
                self.min_trip_distance_miles,
            )
            return TripActionResult(
                status=TripActionStatus.DISCARDED,
                message="Trip shorter than the minimum distance was discarded",
            )

        end_location = await self._reverse_geocode(latitude, longitude)
        completed = trip.complete(
            end_location=end_location,
            end_latitude=latitude,
            end_longitude=longitude,
            end_time=end_time,
        )

        try:
            await TripStore.save_completed(completed, self.user_id)
        except Exception:
            logger.exception("Failed to save completed trip %s; keeping it active", trip.id)
            return TripActionResult(
                status=TripActionStatus.SAVE_FAILED,
                message="Trip could not be saved and is still active",
                active_trip=self.get_active_trip(),
            )

        await self._persistor.clear(trip.id)
        self._reset_state()
        logger.info("Trip %s completed: %.2f mi", completed.id, completed.distance)

        if self._notifier is not None:
            self._spawn(self._notifier.trip_completed(completed))
        if self._on_trip_completed is not None:
            self._spawn(self._on_trip_completed(completed))
        return TripActionResult(
            status=TripActionStatus.COMPLETED,
            message="Trip saved",
            completed_trip=completed,
        )

    async def _complete_orphan_locked(self) -> TripActionResult:
        trip = self.active_trip
        if trip is None:
            return TripActionResult(status=TripActionStatus.NO_ACTIVE_TRIP)
        logger.info("Completing orphaned trip %s at its last known point", trip.id)
        return await self._complete_locked(
            trip.last_latitude,
            trip.last_longitude,
            trip.last_update or trip.start_time,
        )

    def _reset_state(self) -> None:
        self.active_trip = None
        self._orphaned = False
        self.driving_detected = False
        self.stopped_since = None
        self.last_movement_time = None

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def _reverse_geocode(self, latitude: float, longitude: float) -> str:
        try:
            label = await asyncio.wait_for(
                self._geocoder.reverse_geocode(latitude, longitude),
                timeout=self._collaborator_timeout,
            )
        except Exception as exc:
            logger.warning("Reverse geocoding unavailable: %s", exc)
            return format_coordinates(latitude, longitude)
        return label or format_coordinates(latitude, longitude)

    async def _default_purpose(self) -> TripPurpose:
        if self._purpose_provider is None:
            return TripPurpose.BUSINESS
        try:
            return await asyncio.wait_for(
                self._purpose_provider.default_purpose(),
                timeout=self._collaborator_timeout,
            )
        except Exception as exc:
            logger.warning("Default purpose unavailable, using business: %s", exc)
            return TripPurpose.BUSINESS

    async def _final_location(
        self,
        latitude: float,
        longitude: float,
    ) -> tuple[float, float]:
        if self._location_provider is None:
            return latitude, longitude
        try:
            reading = await asyncio.wait_for(
                self._location_provider.current_location(),
                timeout=self._collaborator_timeout,
            )
        except Exception as exc:
            logger.warning("Final location reading failed: %s", exc)
            return latitude, longitude
        return reading or (latitude, longitude)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Trip hook failed: %s", exc, exc_info=exc)

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending trip hooks (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)


__all__ = [
    "AUTO_TRACKED_NOTES",
    "DrivingDetector",
    "LocationProvider",
    "PurposeProvider",
    "new_trip_id",
]
