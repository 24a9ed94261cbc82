import pytest

from core.exceptions import AuthenticationError, RemoteStoreError
from core.http.circuit_breaker import (
    CircuitBreaker,
    CircuitOpen,
    CircuitState,
    counts_as_outage,
    with_circuit_breaker,
)


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _breaker(clock: Clock) -> CircuitBreaker:
    return CircuitBreaker("Remote", failure_threshold=2, recovery_timeout=30, clock=clock)


def test_opens_after_threshold_and_half_opens_after_timeout() -> None:
    clock = Clock()
    breaker = _breaker(clock)

    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitOpen) as raised:
        breaker.check()
    assert raised.value.resets_in == pytest.approx(30)

    clock.now = 30
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.check()


def test_failed_trial_call_reopens_and_success_closes() -> None:
    clock = Clock()
    breaker = _breaker(clock)
    breaker.record_failure()
    breaker.record_failure()
    clock.now = 31

    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN

    clock.now = 62
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_success()
    assert breaker.snapshot() == {
        "service": "Remote",
        "state": "closed",
        "consecutive_failures": 0,
    }


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (RemoteStoreError("boom", status=503), True),
        (RemoteStoreError("bad row", status=400), False),
        (AuthenticationError("expired"), False),
        (TimeoutError(), True),
    ],
)
def test_counts_as_outage(exc, expected) -> None:
    assert counts_as_outage(exc) is expected


@pytest.mark.asyncio
async def test_decorator_skips_call_while_open() -> None:
    clock = Clock()
    breaker = _breaker(clock)
    calls = []

    @with_circuit_breaker(breaker)
    async def flaky():
        calls.append(1)
        raise RemoteStoreError("down", status=502)

    for _ in range(2):
        with pytest.raises(RemoteStoreError):
            await flaky()
    with pytest.raises(CircuitOpen):
        await flaky()

    assert len(calls) == 2
