"""Serialization utilities for trip data."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from date_utils import datetime_to_ms, ensure_utc, parse_timestamp

if TYPE_CHECKING:
    from db.models import Trip


def _isoformat(value) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def serialize_trip(trip: Trip, *, include_points: bool = False) -> dict[str, Any]:
    """Convert a Trip document into a JSON-friendly dict."""
    data: dict[str, Any] = {
        "id": trip.trip_id,
        "status": trip.status,
        "start_location": trip.start_location,
        "end_location": trip.end_location,
        "start_latitude": trip.start_latitude,
        "start_longitude": trip.start_longitude,
        "end_latitude": trip.end_latitude,
        "end_longitude": trip.end_longitude,
        "distance": trip.distance,
        "start_time": trip.start_time,
        "end_time": trip.end_time,
        "purpose": str(trip.purpose),
        "notes": trip.notes,
        "created_at": _isoformat(trip.created_at),
        "updated_at": _isoformat(trip.updated_at),
        "synced_at": _isoformat(trip.synced_at),
        "remote_id": trip.remote_id,
    }
    if include_points:
        data["location_points"] = [
            point.model_dump() for point in trip.location_points
        ]
    return data


def parse_time_bound(value: str | None) -> int | None:
    """Query bound as a ms epoch; accepts digits or ISO 8601 strings."""
    if value is None or value == "":
        return None
    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    parsed = parse_timestamp(text)
    if parsed is None:
        msg = f"Invalid time bound: {value}"
        raise ValueError(msg)
    return datetime_to_ms(parsed)
