from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from core.constants import MPS_TO_MPH
from core.exceptions import ValidationError
from core.http.geocoding import format_coordinates
from db.models import TRIP_STATUS_ACTIVE, TRIP_STATUS_COMPLETED
from tracking.services.detector import AUTO_TRACKED_NOTES, DrivingDetector
from tracking.services.progress import TripProgressPersistor
from trips.models import (
    ActiveTrip,
    GeoSample,
    LocationPoint,
    RecoveryState,
    TripActionStatus,
    TripPurpose,
)
from trips.services.trip_store import TripStore

T0 = 1_700_000_000_000
LAT = 32.0
LON = -97.0
STEP = 0.01  # ~0.69 mi of latitude


class FakeGeocoder:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[float, float]] = []

    async def reverse_geocode(self, lat: float, lon: float) -> str:
        self.calls.append((lat, lon))
        if self.fail:
            msg = "geocoder offline"
            raise ConnectionError(msg)
        return f"Near {lat:.2f}, {lon:.2f}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.started: list[str] = []
        self.completed: list[str] = []

    async def trip_started(self, trip) -> None:
        self.started.append(trip.id)

    async def trip_completed(self, trip) -> None:
        self.completed.append(trip.id)


def _sample(mph: float, ts: int, *, lat: float = LAT, lon: float = LON) -> GeoSample:
    return GeoSample(latitude=lat, longitude=lon, speed=mph / MPS_TO_MPH, timestamp=ts)


def _make_detector(**kwargs) -> DrivingDetector:
    persistor = TripProgressPersistor(
        user_id="test-user",
        retry_delay=0,
        clock=lambda: T0,
    )
    kwargs.setdefault("geocoder", FakeGeocoder())
    return DrivingDetector(
        persistor=persistor,
        user_id="test-user",
        clock=lambda: T0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_speed_scenario_starts_then_completes_after_stationary_window(
    beanie_db,
    active_trip_cache,
) -> None:
    completed_hook = AsyncMock()
    detector = _make_detector(on_trip_completed=completed_hook)

    assert await detector.process_sample(_sample(2, T0)) is None
    assert await detector.process_sample(_sample(2, T0 + 10_000)) is None
    assert detector.active_trip is None

    started = await detector.process_sample(_sample(6, T0 + 20_000))
    assert started is not None
    assert started.status == TripActionStatus.STARTED
    trip_id = started.active_trip.id
    assert started.active_trip.notes == AUTO_TRACKED_NOTES
    assert started.active_trip.start_time == T0 + 20_000

    await detector.process_sample(_sample(7, T0 + 30_000, lat=LAT + STEP))
    await detector.process_sample(_sample(8, T0 + 40_000, lat=LAT + 2 * STEP))
    assert detector.active_trip.distance == pytest.approx(1.38)

    stopped_at = T0 + 50_000
    await detector.process_sample(_sample(1, stopped_at, lat=LAT + 2 * STEP))
    assert detector.stopped_since == stopped_at
    await detector.process_sample(_sample(0, T0 + 60_000, lat=LAT + 2 * STEP))
    assert detector.active_trip is not None

    result = await detector.process_sample(
        _sample(0, stopped_at + 180_000, lat=LAT + 2 * STEP),
    )
    await detector.wait_for_background_tasks()

    assert result is not None
    assert result.status == TripActionStatus.COMPLETED
    completed = result.completed_trip
    assert completed.id == trip_id
    assert completed.distance == pytest.approx(1.38)
    assert completed.end_time == stopped_at + 180_000
    assert completed.end_location == f"Near {LAT + 2 * STEP:.2f}, {LON:.2f}"
    assert detector.active_trip is None
    assert detector.driving_detected is False

    stored = await TripStore.get(trip_id)
    assert stored is not None
    assert stored.status == TRIP_STATUS_COMPLETED
    assert stored.distance == pytest.approx(1.38)
    assert active_trip_cache["active_id"] is None
    completed_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_trip_does_not_end_before_stationary_window(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    await detector.process_sample(_sample(30, T0))
    await detector.process_sample(_sample(1, T0 + 10_000))

    result = await detector.process_sample(_sample(0, T0 + 10_000 + 179_999))

    assert result is None
    assert detector.active_trip is not None
    assert detector.stopped_since == T0 + 10_000


@pytest.mark.asyncio
async def test_fast_sample_clears_pending_stop(beanie_db, active_trip_cache) -> None:
    detector = _make_detector()
    await detector.process_sample(_sample(30, T0))
    await detector.process_sample(_sample(1, T0 + 10_000))
    assert detector.stopped_since is not None

    await detector.process_sample(_sample(30, T0 + 20_000, lat=LAT + STEP))

    assert detector.stopped_since is None
    assert detector.last_movement_time == T0 + 20_000


@pytest.mark.asyncio
async def test_distance_is_monotonic_and_ignores_jitter(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    await detector.start_trip(LAT, LON, start_location="Home", timestamp=T0)

    positions = [
        LAT + STEP,
        LAT + STEP + 0.00001,  # GPS jitter, below the noise floor
        LAT + 2 * STEP,
        LAT + STEP,  # doubling back still adds distance
    ]
    distances = []
    for index, lat in enumerate(positions, start=1):
        await detector.process_sample(_sample(25, T0 + index * 5_000, lat=lat))
        distances.append(detector.active_trip.distance)

    assert distances == sorted(distances)
    assert distances[0] == distances[1]
    assert distances[-1] == pytest.approx(2.07)
    assert len(detector.active_trip.location_points) == 4


@pytest.mark.asyncio
async def test_start_trip_is_idempotent(beanie_db, active_trip_cache) -> None:
    detector = _make_detector()

    first = await detector.start_trip(LAT, LON, timestamp=T0)
    second = await detector.start_trip(LAT + 1, LON + 1, timestamp=T0 + 1_000)

    assert first.status == TripActionStatus.STARTED
    assert second.status == TripActionStatus.ALREADY_ACTIVE
    assert second.active_trip.id == first.active_trip.id
    assert detector.active_trip.start_latitude == LAT


@pytest.mark.asyncio
async def test_start_trip_rejects_invalid_coordinates(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()

    with pytest.raises(ValidationError):
        await detector.start_trip(123.0, LON)

    assert detector.active_trip is None


@pytest.mark.asyncio
async def test_manual_start_and_stop_round_trip(beanie_db, active_trip_cache) -> None:
    notifier = RecordingNotifier()
    detector = _make_detector(notifier=notifier)

    started = await detector.start_trip(
        LAT,
        LON,
        purpose=TripPurpose.MEDICAL,
        notes="clinic",
        timestamp=T0,
    )
    trip_id = started.active_trip.id
    persisted = await TripStore.get(trip_id)
    assert persisted is not None
    assert persisted.status == TRIP_STATUS_ACTIVE

    stopped = await detector.stop_trip(
        latitude=LAT + STEP,
        longitude=LON,
        timestamp=T0 + 600_000,
    )
    await detector.wait_for_background_tasks()

    assert stopped.status == TripActionStatus.COMPLETED
    trip = stopped.completed_trip
    assert trip.purpose == TripPurpose.MEDICAL
    assert trip.notes == "clinic"
    assert trip.end_time == T0 + 600_000
    assert trip.start_location == f"Near {LAT:.2f}, {LON:.2f}"

    stored = await TripStore.get(trip_id)
    assert stored.status == TRIP_STATUS_COMPLETED
    assert stored.end_latitude == pytest.approx(LAT + STEP)
    assert notifier.started == [trip_id]
    assert notifier.completed == [trip_id]

    again = await detector.stop_trip()
    assert again.status == TripActionStatus.NO_ACTIVE_TRIP
    assert again.ok is False


@pytest.mark.asyncio
async def test_geocoder_failure_falls_back_to_coordinates(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector(geocoder=FakeGeocoder(fail=True))

    result = await detector.start_trip(LAT, LON, timestamp=T0)

    assert result.active_trip.start_location == format_coordinates(LAT, LON)


@pytest.mark.asyncio
async def test_save_failure_keeps_trip_active(
    beanie_db,
    active_trip_cache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    detector = _make_detector()
    started = await detector.start_trip(LAT, LON, timestamp=T0)
    trip_id = started.active_trip.id

    monkeypatch.setattr(
        TripStore,
        "save_completed",
        AsyncMock(side_effect=ConnectionError("store offline")),
    )
    result = await detector.stop_trip(timestamp=T0 + 60_000)

    assert result.status == TripActionStatus.SAVE_FAILED
    assert result.ok is False
    assert detector.active_trip is not None
    assert detector.active_trip.id == trip_id
    assert active_trip_cache["active_id"] == trip_id
    stored = await TripStore.get(trip_id)
    assert stored.status == TRIP_STATUS_ACTIVE


@pytest.mark.asyncio
async def test_driving_flag_without_trip_self_heals(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    detector.driving_detected = True

    result = await detector.process_sample(_sample(1, T0))

    assert result is None
    assert detector.driving_detected is False
    assert detector.active_trip is None


@pytest.mark.asyncio
async def test_malformed_samples_are_dropped(beanie_db, active_trip_cache) -> None:
    detector = _make_detector()

    assert await detector.process_sample(None) is None
    assert await detector.process_sample({"latitude": "north"}) is None
    assert await detector.process_sample(
        {"latitude": 95, "longitude": LON, "timestamp": T0},
    ) is None
    assert detector.active_trip is None
    assert detector.driving_detected is False


@pytest.mark.asyncio
async def test_speed_derived_from_positions_when_device_has_none(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    await detector.process_sample(
        GeoSample(latitude=LAT, longitude=LON, speed=-1, timestamp=T0),
    )
    assert detector.active_trip is None

    # 0.69 mi in 60 s is ~41 mph
    result = await detector.process_sample(
        GeoSample(latitude=LAT + STEP, longitude=LON, timestamp=T0 + 60_000),
    )

    assert result.status == TripActionStatus.STARTED
    assert detector.last_speed == pytest.approx(41.4, abs=0.1)


@pytest.mark.asyncio
async def test_trip_below_minimum_distance_is_discarded(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector(min_trip_distance_miles=0.5)
    started = await detector.start_trip(LAT, LON, timestamp=T0)
    trip_id = started.active_trip.id

    result = await detector.stop_trip(timestamp=T0 + 60_000)

    assert result.status == TripActionStatus.DISCARDED
    assert detector.active_trip is None
    assert await TripStore.get(trip_id) is None


@pytest.mark.asyncio
async def test_orphan_is_saved_when_new_trip_starts(
    beanie_db,
    active_trip_cache,
) -> None:
    orphan = ActiveTrip(
        id="orphan-1",
        start_location="Office",
        start_latitude=LAT,
        start_longitude=LON,
        start_time=T0 - 7_200_000,
        distance=4.2,
        last_latitude=LAT + STEP,
        last_longitude=LON,
        location_points=[
            LocationPoint(latitude=LAT, longitude=LON, timestamp=T0 - 7_200_000),
        ],
        last_update=T0 - 6_000_000,
    )
    await TripStore.save_active(orphan, "test-user")

    detector = _make_detector()
    report = await detector._persistor.recover_on_startup(feed_running=False)
    assert report.state == RecoveryState.ORPHANED
    detector.restore(report)

    status = detector.get_active_trip_status(feed_running=True, orphan_grace_ms=3_600_000)
    assert status.orphaned is True
    assert status.needs_attention is True

    result = await detector.process_sample(_sample(40, T0, lat=LAT + 1))

    assert result.status == TripActionStatus.STARTED
    assert result.active_trip.id != "orphan-1"
    saved = await TripStore.get("orphan-1")
    assert saved.status == TRIP_STATUS_COMPLETED
    assert saved.end_time == T0 - 6_000_000
    assert saved.distance == pytest.approx(4.2)


@pytest.mark.asyncio
async def test_resolve_orphan_discard_removes_record(
    beanie_db,
    active_trip_cache,
) -> None:
    orphan = ActiveTrip(
        id="orphan-2",
        start_location="Office",
        start_latitude=LAT,
        start_longitude=LON,
        start_time=T0 - 60_000,
        last_latitude=LAT,
        last_longitude=LON,
        last_update=T0 - 60_000,
    )
    await TripStore.save_active(orphan, "test-user")
    detector = _make_detector()
    detector.restore(await detector._persistor.recover_on_startup(feed_running=False))

    result = await detector.resolve_orphan("discard")

    assert result.status == TripActionStatus.RESOLVED
    assert detector.active_trip is None
    assert await TripStore.get("orphan-2") is None

    nothing = await detector.resolve_orphan("save")
    assert nothing.status == TripActionStatus.NO_ACTIVE_TRIP


@pytest.mark.asyncio
async def test_check_stationary_completes_quiet_trip(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    await detector.start_trip(LAT, LON, timestamp=T0)

    assert await detector.check_stationary(now=T0 + 179_000) is None

    result = await detector.check_stationary(now=T0 + 180_000)

    assert result.status == TripActionStatus.COMPLETED
    assert result.completed_trip.end_time == T0


@pytest.mark.asyncio
async def test_disabling_auto_tracking_completes_trip_and_ignores_samples(
    beanie_db,
    active_trip_cache,
) -> None:
    detector = _make_detector()
    await detector.process_sample(_sample(30, T0))
    assert detector.active_trip is not None

    result = await detector.set_auto_tracking(False)

    assert result.status == TripActionStatus.COMPLETED
    assert detector.auto_tracking_enabled is False
    assert await detector.process_sample(_sample(30, T0 + 5_000)) is None
    assert detector.active_trip is None


@pytest.mark.asyncio
async def test_get_active_trip_returns_copy(beanie_db, active_trip_cache) -> None:
    detector = _make_detector()
    await detector.start_trip(LAT, LON, timestamp=T0)

    snapshot = detector.get_active_trip()
    snapshot.distance = 99.0
    snapshot.location_points.clear()

    assert detector.active_trip.distance == 0.0
    assert len(detector.active_trip.location_points) == 1
