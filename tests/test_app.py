from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

import app as app_module


def _runtime(*, tracking: bool) -> SimpleNamespace:
    return SimpleNamespace(
        channel=SimpleNamespace(running=True),
        scheduler=SimpleNamespace(running=False),
        detector=SimpleNamespace(active_trip=object() if tracking else None),
    )


def test_health_reports_running_components() -> None:
    with (
        patch.object(app_module, "get_runtime", return_value=_runtime(tracking=True)),
        patch.object(app_module.db_manager, "ping", new=AsyncMock(return_value=True)),
    ):
        response = TestClient(app_module.app).get("/api/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "database": True,
        "sample_feed": True,
        "sync_scheduler": False,
        "tracking": True,
    }


def test_health_degraded_when_database_unreachable() -> None:
    with (
        patch.object(app_module, "get_runtime", return_value=_runtime(tracking=False)),
        patch.object(app_module.db_manager, "ping", new=AsyncMock(return_value=False)),
    ):
        response = TestClient(app_module.app).get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


def test_unknown_route_uses_not_found_handler() -> None:
    response = TestClient(app_module.app).get("/api/nowhere")

    assert response.status_code == 404
    assert response.json()["error"] == "Not found"
