"""
In-process geo sample channel.

Samples arrive from the HTTP endpoint in arbitrary request tasks; a single
consumer task drains the queue so the detector sees them in arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from config import STATIONARY_DURATION_MS, STATIONARY_WATCHDOG_ENABLED
from tracking.services.detector import DrivingDetector
from trips.models import GeoSample

logger = logging.getLogger(__name__)


class SampleChannel:
    """FIFO of geo samples with one consumer feeding the detector."""

    def __init__(
        self,
        detector: DrivingDetector,
        *,
        watchdog_enabled: bool = STATIONARY_WATCHDOG_ENABLED,
        watchdog_interval_seconds: float | None = None,
    ) -> None:
        self._detector = detector
        self._queue: asyncio.Queue[GeoSample | dict[str, Any]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._watchdog_enabled = watchdog_enabled
        self._watchdog_interval = (
            watchdog_interval_seconds
            if watchdog_interval_seconds is not None
            else STATIONARY_DURATION_MS / 1000
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, sample: GeoSample | dict[str, Any]) -> None:
        """Queue a sample; it is applied once the consumer reaches it."""
        if not self.running:
            logger.debug("Sample queued while the channel is stopped")
        self._queue.put_nowait(sample)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._consume(), name="sample-channel")
        logger.info(
            "Sample channel started (stationary watchdog %s)",
            "on" if self._watchdog_enabled else "off",
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Sample channel stopped (%d samples pending)", self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued sample has been processed."""
        await self._queue.join()

    async def _next_sample(self) -> GeoSample | dict[str, Any] | None:
        if not self._watchdog_enabled:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(
                self._queue.get(),
                timeout=self._watchdog_interval,
            )
        except TimeoutError:
            return None

    async def _consume(self) -> None:
        while True:
            sample = await self._next_sample()
            if sample is None:
                try:
                    await self._detector.check_stationary()
                except Exception:
                    logger.exception("Stationary watchdog check failed")
                continue
            try:
                await self._detector.process_sample(sample)
            except Exception:
                logger.exception("Location sample could not be applied")
            finally:
                self._queue.task_done()


__all__ = ["SampleChannel"]
