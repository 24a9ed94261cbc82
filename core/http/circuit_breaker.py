"""
Async circuit breakers for the remote trip store and the geocoder.

A run of consecutive outages opens the circuit; while it is open calls fail
fast with :class:`CircuitOpen`, which the sync engine treats as a network
failure and queues for a later attempt.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from core.exceptions import AuthenticationError, ExternalServiceError, RemoteStoreError

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitOpen(ExternalServiceError):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, service: str, resets_in: float) -> None:
        super().__init__(
            f"{service} unavailable, retrying in {resets_in:.0f}s",
            {"service": service, "resets_in": resets_in},
        )
        self.service = service
        self.resets_in = resets_in


class CircuitBreaker:
    """
    Closed until ``failure_threshold`` outages in a row, then open for
    ``recovery_timeout`` seconds, then half-open: one trial call decides
    whether it closes again or re-opens.
    """

    def __init__(
        self,
        service: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self.consecutive_failures = 0
        self._opened_at: float | None = None
        self._state = CircuitState.CLOSED

    def _elapsed_open(self) -> float:
        if self._opened_at is None:
            return 0.0
        return self._clock() - self._opened_at

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._elapsed_open() >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("%s reachable again, circuit closed", self.service)
        self.reset()

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        tripped = self._state == CircuitState.HALF_OPEN or (
            self._state == CircuitState.CLOSED
            and self.consecutive_failures >= self.failure_threshold
        )
        if tripped:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "%s failed %d times in a row, circuit open for %.0fs",
                self.service,
                self.consecutive_failures,
                self.recovery_timeout,
            )

    def check(self) -> None:
        if self.state == CircuitState.OPEN:
            resets_in = max(0.0, self.recovery_timeout - self._elapsed_open())
            raise CircuitOpen(self.service, resets_in)

    def snapshot(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "state": str(self.state),
            "consecutive_failures": self.consecutive_failures,
        }


def counts_as_outage(exc: BaseException) -> bool:
    """Rejected requests (4xx, bad credentials) say nothing about service health."""
    if isinstance(exc, AuthenticationError):
        return False
    if isinstance(exc, RemoteStoreError) and exc.status is not None:
        return exc.status >= 500
    return True


remote_store_breaker = CircuitBreaker("Remote trip store")
nominatim_breaker = CircuitBreaker("Nominatim", failure_threshold=3)


def with_circuit_breaker(
    breaker: CircuitBreaker,
    *,
    is_failure: Callable[[BaseException], bool] = counts_as_outage,
):
    """Wrap an async call so it fails fast while ``breaker`` is open."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            breaker.check()
            try:
                result = await fn(*args, **kwargs)
            except CircuitOpen:
                raise
            except Exception as exc:
                if is_failure(exc):
                    breaker.record_failure()
                raise
            breaker.record_success()
            return result

        return wrapper

    return decorator
