"""Trip start/end notification collaborators."""

from __future__ import annotations

import logging
from typing import Protocol

from tracking.services.settings import get_tracking_settings
from trips.models import ActiveTrip, CompletedTrip

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def trip_started(self, trip: ActiveTrip) -> None: ...

    async def trip_completed(self, trip: CompletedTrip) -> None: ...


class LoggingNotifier:
    """
    Notifier that writes trip events to the application log.

    Push delivery belongs to the host platform; this implementation only
    records what would be delivered, honouring ``notifications_enabled``.
    """

    def __init__(self, *, enabled_check=None) -> None:
        self._enabled_check = enabled_check

    async def _enabled(self) -> bool:
        if self._enabled_check is None:
            return True
        return bool(await self._enabled_check())

    async def trip_started(self, trip: ActiveTrip) -> None:
        if not await self._enabled():
            return
        logger.info("Trip started: %s from %s", trip.id, trip.start_location)

    async def trip_completed(self, trip: CompletedTrip) -> None:
        if not await self._enabled():
            return
        logger.info(
            "Trip completed: %s, %.2f mi from %s to %s",
            trip.id,
            trip.distance,
            trip.start_location,
            trip.end_location,
        )


async def notifications_enabled() -> bool:
    settings = await get_tracking_settings()
    return settings.notifications_enabled


__all__ = ["LoggingNotifier", "Notifier", "notifications_enabled"]
