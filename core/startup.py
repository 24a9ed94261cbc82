"""Runtime startup/shutdown: builds and owns the long-lived services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config import ORPHAN_GRACE_MS, REMOTE_STORE_URL, USER_ID
from core.http.geocoding import NominatimGeocoder
from core.http.session import cleanup_session
from core.redis import close_shared_redis
from db import db_manager
from sync.services.remote_store import PostgrestRemoteTripStore
from sync.services.scheduler import SyncScheduler
from sync.services.sync_engine import SyncEngine
from tracking.services.detector import DrivingDetector
from tracking.services.notifications import LoggingNotifier, notifications_enabled
from tracking.services.progress import TripProgressPersistor
from tracking.services.sample_feed import SampleChannel
from tracking.services.settings import SettingsPurposeProvider, get_tracking_settings
from trips.models import CompletedTrip, RecoveryReport

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    persistor: TripProgressPersistor
    detector: DrivingDetector
    channel: SampleChannel
    engine: SyncEngine
    scheduler: SyncScheduler
    orphan_grace_ms: int = ORPHAN_GRACE_MS
    recovery: RecoveryReport | None = None


class _RuntimeState:
    runtime: Runtime | None = None


def build_runtime(*, user_id: str = USER_ID) -> Runtime:
    """Wire the detector, sample channel and sync engine together."""
    persistor = TripProgressPersistor(user_id=user_id)
    engine = SyncEngine(PostgrestRemoteTripStore(), user_id=user_id)

    async def upload_on_completion(trip: CompletedTrip) -> None:
        if not REMOTE_STORE_URL:
            return
        await engine.upload_completed_trip(trip)

    detector = DrivingDetector(
        persistor=persistor,
        geocoder=NominatimGeocoder(),
        purpose_provider=SettingsPurposeProvider(),
        notifier=LoggingNotifier(enabled_check=notifications_enabled),
        on_trip_completed=upload_on_completion,
        user_id=user_id,
    )
    return Runtime(
        persistor=persistor,
        detector=detector,
        channel=SampleChannel(detector),
        engine=engine,
        scheduler=SyncScheduler(engine),
    )


def get_runtime() -> Runtime:
    if _RuntimeState.runtime is None:
        _RuntimeState.runtime = build_runtime()
    return _RuntimeState.runtime


def set_runtime(runtime: Runtime | None) -> None:
    _RuntimeState.runtime = runtime


async def initialize_runtime() -> Runtime:
    """
    Initialize the database, recover any interrupted trip and start the
    background consumers.
    """
    await db_manager.init_beanie()
    logger.info("Beanie ODM initialized successfully.")

    runtime = get_runtime()
    settings = await get_tracking_settings()
    runtime.detector.auto_tracking_enabled = settings.auto_tracking_enabled

    # the feed only runs with auto tracking on; a trip idle past the
    # stationary window is orphaned regardless
    report = await runtime.persistor.recover_on_startup(
        feed_running=settings.auto_tracking_enabled,
    )
    runtime.detector.restore(report)
    runtime.recovery = report

    runtime.channel.start()
    if REMOTE_STORE_URL:
        runtime.scheduler.start()
    else:
        logger.info("REMOTE_STORE_URL not set; background sync disabled")
    return runtime


async def shutdown_runtime() -> None:
    """Stop background tasks and release connections."""
    runtime = _RuntimeState.runtime
    if runtime is not None:
        await runtime.scheduler.stop()
        await runtime.channel.stop()
        await runtime.detector.wait_for_background_tasks()
    await cleanup_session()
    try:
        await close_shared_redis()
    except Exception as exc:
        logger.warning("Error closing Redis client: %s", exc)
    await db_manager.cleanup_connections()


__all__ = [
    "Runtime",
    "build_runtime",
    "get_runtime",
    "initialize_runtime",
    "set_runtime",
    "shutdown_runtime",
]
