import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient
from network_blocker import install_network_blocker

from core.http.circuit_breaker import nominatim_breaker, remote_store_breaker
from db.models import ALL_DOCUMENT_MODELS
from tracking.services import progress


@pytest.fixture(autouse=True)
def _default_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    install_network_blocker(monkeypatch)
    remote_store_breaker.reset()
    nominatim_breaker.reset()


@pytest.fixture
async def beanie_db():
    client = AsyncMongoMockClient()
    database = client["test_db"]
    await init_beanie(database=database, document_models=ALL_DOCUMENT_MODELS)
    return database


@pytest.fixture
def active_trip_cache(monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
    """In-memory stand-in for the Redis active-trip cache."""
    state: dict[str, object] = {"snapshots": {}, "active_id": None, "fail": False}

    def _check() -> None:
        if state["fail"]:
            msg = "cache unavailable"
            raise ConnectionError(msg)

    async def save_active_trip_snapshot(trip: dict[str, object]) -> None:
        _check()
        snapshots = state["snapshots"]
        assert isinstance(snapshots, dict)
        snapshots[trip["id"]] = dict(trip)
        state["active_id"] = trip["id"]

    async def get_active_trip_snapshot() -> dict[str, object] | None:
        _check()
        active_id = state["active_id"]
        snapshots = state["snapshots"]
        assert isinstance(snapshots, dict)
        trip = snapshots.get(active_id)
        return dict(trip) if isinstance(trip, dict) else None

    async def clear_active_trip_snapshot(trip_id: str) -> None:
        _check()
        snapshots = state["snapshots"]
        assert isinstance(snapshots, dict)
        snapshots.pop(trip_id, None)
        if state["active_id"] == trip_id:
            state["active_id"] = None

    monkeypatch.setattr(progress, "save_active_trip_snapshot", save_active_trip_snapshot)
    monkeypatch.setattr(progress, "get_active_trip_snapshot", get_active_trip_snapshot)
    monkeypatch.setattr(
        progress,
        "clear_active_trip_snapshot",
        clear_active_trip_snapshot,
    )
    return state
