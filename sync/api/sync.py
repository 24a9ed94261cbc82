"""API routes for trip sync actions."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from core.api import api_route
from core.startup import get_runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/sync", response_model=dict)
@api_route(logger)
async def start_trip_sync():
    """Run a sync cycle now; waits for a cycle already in progress."""
    result = await get_runtime().engine.sync_trips()
    return {
        "status": "success" if result.error is None else "partial",
        "requires_user_action": result.requires_user_action,
        **result.model_dump(mode="json"),
    }


@router.get("/api/sync/status", response_model=dict)
@api_route(logger)
async def get_trip_sync_status():
    """Last sync time and offline queue counts."""
    return await get_runtime().engine.get_status()


@router.delete("/api/sync/queue/failed", response_model=dict)
@api_route(logger)
async def clear_failed_operations():
    """Drop queued operations that exhausted their retries."""
    removed = await get_runtime().engine.clear_failed_operations()
    return {"status": "success", "removed": removed}
