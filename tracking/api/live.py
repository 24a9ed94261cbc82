"""API routes for the sample feed, trip control and tracking settings."""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Request, status
from pydantic import ValidationError as PydanticValidationError

from core.api import api_route
from core.exceptions import PersistenceError, ValidationError
from core.startup import get_runtime
from tracking.services.settings import get_tracking_settings, update_tracking_settings
from trips.models import GeoSample, ManualTripStart, TrackingSettingsUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


def _settings_payload(settings) -> dict[str, Any]:
    return {
        "default_purpose": settings.default_purpose,
        "auto_tracking_enabled": settings.auto_tracking_enabled,
        "notifications_enabled": settings.notifications_enabled,
    }


@router.post(
    "/api/tracking/samples",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=dict,
)
@api_route(logger)
async def publish_samples(request: Request):
    """
    Accept one sample or a list of samples from the geo sample source.

    Samples are validated and queued; the detector applies them in order.
    Malformed entries are skipped and counted.
    """
    try:
        payload = await request.json()
    except ValueError as exc:
        msg = "Request body must be JSON"
        raise ValidationError(msg) from exc

    items = payload if isinstance(payload, list) else [payload]
    runtime = get_runtime()
    accepted = 0
    rejected = 0
    for item in items:
        try:
            sample = GeoSample.model_validate(item)
        except PydanticValidationError as exc:
            logger.warning("Rejected location sample: %s", exc.errors()[:1])
            rejected += 1
            continue
        runtime.channel.publish(sample)
        accepted += 1

    return {"status": "accepted", "accepted": accepted, "rejected": rejected}


@router.get("/api/tracking/active", response_model=dict)
@api_route(logger)
async def get_active_trip():
    """Current active trip, including orphan information."""
    runtime = get_runtime()
    trip_status = runtime.detector.get_active_trip_status(
        feed_running=runtime.channel.running,
        orphan_grace_ms=runtime.orphan_grace_ms,
    )
    return {
        "status": "success",
        "auto_tracking_enabled": runtime.detector.auto_tracking_enabled,
        **trip_status.model_dump(mode="json"),
    }


@router.post("/api/tracking/trips/start", response_model=dict)
@api_route(logger)
async def start_trip(payload: ManualTripStart):
    """Start a trip manually; an already active trip is returned unchanged."""
    result = await get_runtime().detector.start_trip(
        payload.latitude,
        payload.longitude,
        start_location=payload.start_location,
        purpose=payload.purpose,
        notes=payload.notes,
    )
    return result.model_dump(mode="json")


@router.post("/api/tracking/trips/stop", response_model=dict)
@api_route(logger)
async def stop_trip():
    """Stop and save the active trip."""
    result = await get_runtime().detector.stop_trip()
    return result.model_dump(mode="json")


@router.post("/api/tracking/orphan/{action}", response_model=dict)
@api_route(logger)
async def resolve_orphan(action: Literal["save", "discard"]):
    """Save or discard the trip left behind by an interrupted session."""
    result = await get_runtime().detector.resolve_orphan(action)
    return result.model_dump(mode="json")


@router.get("/api/tracking/settings", response_model=dict)
@api_route(logger)
async def get_settings():
    settings = await get_tracking_settings()
    return _settings_payload(settings)


@router.put("/api/tracking/settings", response_model=dict)
@api_route(logger)
async def put_settings(payload: TrackingSettingsUpdate):
    """Update tracking settings; turning auto tracking off completes the active trip."""
    runtime = get_runtime()
    response: dict[str, Any] = {}
    if payload.auto_tracking_enabled is not None:
        result = await runtime.detector.set_auto_tracking(payload.auto_tracking_enabled)
        if result is not None:
            response["trip"] = result.model_dump(mode="json")
            if not result.ok:
                msg = result.message or "Active trip could not be saved"
                raise PersistenceError(msg)

    settings = await update_tracking_settings(payload)
    response.update(_settings_payload(settings))
    return response


__all__ = ["router"]
