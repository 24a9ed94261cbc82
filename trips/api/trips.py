"""API routes for stored trips."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query

from config import USER_ID
from core.api import api_route
from core.exceptions import ResourceNotFoundError, ValidationError
from core.startup import get_runtime
from trips.models import TripDetailsUpdate, TripPurpose
from trips.serializers import parse_time_bound, serialize_trip
from trips.services.trip_store import TripStore

logger = logging.getLogger(__name__)
router = APIRouter()


def _time_range(start: str | None, end: str | None) -> tuple[int | None, int | None]:
    try:
        return parse_time_bound(start), parse_time_bound(end)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


@router.get("/api/trips", response_model=dict)
@api_route(logger)
async def list_trips(
    start: Annotated[str | None, Query(description="ms epoch or ISO 8601")] = None,
    end: Annotated[str | None, Query(description="ms epoch or ISO 8601")] = None,
    purpose: TripPurpose | None = None,
    include_active: bool = False,
):
    """Trips for the current user, newest first."""
    start_time, end_time = _time_range(start, end)
    trips = await TripStore.list_by_user(
        USER_ID,
        start_time=start_time,
        end_time=end_time,
        purpose=purpose,
        include_active=include_active,
    )
    return {
        "status": "success",
        "count": len(trips),
        "trips": [serialize_trip(trip) for trip in trips],
    }


@router.get("/api/trips/stats", response_model=dict)
@api_route(logger)
async def trip_stats(
    start: Annotated[str | None, Query(description="ms epoch or ISO 8601")] = None,
    end: Annotated[str | None, Query(description="ms epoch or ISO 8601")] = None,
):
    """Trip counts and mileage by purpose."""
    start_time, end_time = _time_range(start, end)
    return await TripStore.stats_by_purpose(USER_ID, start_time, end_time)


@router.get("/api/trips/{trip_id}", response_model=dict)
@api_route(logger)
async def get_trip(trip_id: str):
    trip = await TripStore.get(trip_id)
    if trip is None:
        msg = f"Trip {trip_id} not found"
        raise ResourceNotFoundError(msg)
    return {"status": "success", "trip": serialize_trip(trip, include_points=True)}


@router.patch("/api/trips/{trip_id}", response_model=dict)
@api_route(logger)
async def update_trip(trip_id: str, payload: TripDetailsUpdate):
    """Edit a trip's purpose and notes."""
    trip = await get_runtime().engine.update_trip_details(trip_id, payload)
    return {"status": "success", "trip": serialize_trip(trip)}


@router.delete("/api/trips/{trip_id}", response_model=dict)
@api_route(logger)
async def delete_trip(trip_id: str):
    """Delete a trip locally and mark it deleted in the remote store."""
    return await get_runtime().engine.delete_trip(trip_id)
