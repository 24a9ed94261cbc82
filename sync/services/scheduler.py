"""Background scheduling of sync cycles."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from config import SYNC_INTERVAL_SECONDS, SYNC_STARTUP_DELAY_SECONDS
from sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Drain the queue at startup, then run full syncs periodically.

    The first full sync is deferred so it does not compete with startup
    work; every cycle goes through the engine's lock, so a manual sync
    requested meanwhile simply waits its turn.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        startup_delay: float = SYNC_STARTUP_DELAY_SECONDS,
        interval: float = SYNC_INTERVAL_SECONDS,
    ) -> None:
        self._engine = engine
        self._startup_delay = startup_delay
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="sync-scheduler")
        logger.info(
            "Sync scheduler started (first sync in %.0fs, then every %.0fs)",
            self._startup_delay,
            self._interval,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Sync scheduler stopped")

    async def _run(self) -> None:
        try:
            await self._engine.process_queue()
        except Exception:
            logger.exception("Startup queue drain failed")

        await asyncio.sleep(self._startup_delay)
        while True:
            try:
                await self._engine.sync_trips()
            except Exception:
                logger.exception("Scheduled trip sync failed")
            await asyncio.sleep(self._interval)


__all__ = ["SyncScheduler"]
