"""Redis-backed volatile cache for the in-progress trip."""

from __future__ import annotations

import json
import logging
from typing import Any

from core.redis import get_shared_redis

logger = logging.getLogger(__name__)

ACTIVE_TRIP_TTL_SECONDS = 24 * 60 * 60
_ACTIVE_TRIP_ID_KEY = "tracking:active_trip_id"
_TRIP_KEY_PREFIX = "tracking:active_trip:"


def _trip_key(trip_id: str) -> str:
    return f"{_TRIP_KEY_PREFIX}{trip_id}"


async def save_active_trip_snapshot(trip: dict[str, Any]) -> None:
    """Store the active trip snapshot and mark it as current."""
    trip_id = str(trip.get("id") or "").strip()
    if not trip_id:
        msg = "Trip snapshot missing id"
        raise ValueError(msg)

    serialized = json.dumps(trip)
    client = await get_shared_redis()
    pipe = client.pipeline()
    pipe.set(_trip_key(trip_id), serialized, ex=ACTIVE_TRIP_TTL_SECONDS)
    pipe.set(_ACTIVE_TRIP_ID_KEY, trip_id, ex=ACTIVE_TRIP_TTL_SECONDS)
    await pipe.execute()


async def get_active_trip_snapshot() -> dict[str, Any] | None:
    """Load the currently active trip snapshot, if any."""
    client = await get_shared_redis()
    trip_id = await client.get(_ACTIVE_TRIP_ID_KEY)
    if not trip_id:
        return None

    raw = await client.get(_trip_key(trip_id))
    if not raw:
        await client.delete(_ACTIVE_TRIP_ID_KEY)
        return None

    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Invalid JSON in active trip snapshot %s; deleting key", trip_id)
        await client.delete(_trip_key(trip_id), _ACTIVE_TRIP_ID_KEY)
        return None

    if not isinstance(payload, dict):
        await client.delete(_trip_key(trip_id), _ACTIVE_TRIP_ID_KEY)
        return None
    return payload


async def clear_active_trip_snapshot(trip_id: str) -> None:
    """Delete a trip snapshot and clear the active pointer when it matches."""
    tid = str(trip_id or "").strip()
    if not tid:
        return

    client = await get_shared_redis()
    active_id = await client.get(_ACTIVE_TRIP_ID_KEY)

    pipe = client.pipeline()
    pipe.delete(_trip_key(tid))
    if active_id == tid:
        pipe.delete(_ACTIVE_TRIP_ID_KEY)
    await pipe.execute()


__all__ = [
    "ACTIVE_TRIP_TTL_SECONDS",
    "clear_active_trip_snapshot",
    "get_active_trip_snapshot",
    "save_active_trip_snapshot",
]
