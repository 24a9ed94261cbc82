"""Beanie ODM document models for MongoDB collections.

This module defines all document models using Beanie ODM, which provides:
- Automatic Pydantic validation
- Built-in async CRUD operations
- Index definitions at the model level

Usage:
    from db.models import Trip, QueuedOperation

    trip = await Trip.find_one(Trip.trip_id == "abc123")
    trip.notes = "client visit"
    await trip.save()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed
from pydantic import Field, field_validator
from pymongo import ASCENDING, DESCENDING, IndexModel

from date_utils import get_current_utc_time, parse_timestamp
from trips.models import (
    ActiveTrip,
    CompletedTrip,
    LocationPoint,
    TripPurpose,
)

TRIP_STATUS_ACTIVE = "active"
TRIP_STATUS_COMPLETED = "completed"
IN_PROGRESS_LABEL = "In Progress"

OperationType = Literal["upload", "create", "delete"]


class Trip(Document):
    """Trip document in the local trip store, keyed by ``trip_id``.

    An in-progress trip is mirrored here with ``status="active"`` and its last
    recorded point as the end coordinates; completion overwrites the same
    document.
    """

    trip_id: Indexed(str, unique=True)
    user_id: Indexed(str)
    status: str = TRIP_STATUS_COMPLETED
    start_location: str
    end_location: str = IN_PROGRESS_LABEL
    start_latitude: float
    start_longitude: float
    end_latitude: float | None = None
    end_longitude: float | None = None
    distance: float = 0.0
    start_time: int
    end_time: int | None = None
    purpose: TripPurpose = TripPurpose.BUSINESS
    notes: str = ""
    location_points: list[LocationPoint] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=get_current_utc_time)
    updated_at: datetime = Field(default_factory=get_current_utc_time)

    # Remote bookkeeping
    remote_id: str | None = None
    synced_at: datetime | None = None

    @field_validator("created_at", "updated_at", "synced_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        if v is None:
            return None
        return parse_timestamp(v)

    @property
    def is_active(self) -> bool:
        return self.status == TRIP_STATUS_ACTIVE

    def to_active_trip(self) -> ActiveTrip:
        last_lat = (
            self.end_latitude if self.end_latitude is not None else self.start_latitude
        )
        last_lon = (
            self.end_longitude
            if self.end_longitude is not None
            else self.start_longitude
        )
        return ActiveTrip(
            id=self.trip_id,
            start_location=self.start_location,
            start_latitude=self.start_latitude,
            start_longitude=self.start_longitude,
            start_time=self.start_time,
            purpose=self.purpose,
            notes=self.notes or None,
            distance=self.distance,
            last_latitude=last_lat,
            last_longitude=last_lon,
            location_points=list(self.location_points),
            last_update=self.end_time,
        )

    def to_completed_trip(self) -> CompletedTrip:
        return CompletedTrip(
            id=self.trip_id,
            start_location=self.start_location,
            start_latitude=self.start_latitude,
            start_longitude=self.start_longitude,
            start_time=self.start_time,
            purpose=self.purpose,
            notes=self.notes or None,
            distance=self.distance,
            location_points=list(self.location_points),
            end_location=self.end_location,
            end_latitude=(
                self.end_latitude
                if self.end_latitude is not None
                else self.start_latitude
            ),
            end_longitude=(
                self.end_longitude
                if self.end_longitude is not None
                else self.start_longitude
            ),
            end_time=self.end_time if self.end_time is not None else self.start_time,
        )

    class Settings:
        name = "trips"
        use_state_management = True
        indexes = [
            IndexModel([("user_id", ASCENDING)], name="trips_user_id_idx"),
            IndexModel([("start_time", DESCENDING)], name="trips_start_time_idx"),
            IndexModel(
                [("user_id", ASCENDING), ("start_time", ASCENDING), ("end_time", ASCENDING)],
                name="trips_time_window_idx",
            ),
        ]


class QueuedOperation(Document):
    """A remote-store operation waiting to be retried."""

    operation_id: Indexed(str, unique=True)
    type: OperationType
    trip: dict[str, Any]
    attempts: int = 0
    last_attempt_at: datetime | None = None
    last_error: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=get_current_utc_time)

    @field_validator("last_attempt_at", "created_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        if v is None:
            return None
        return parse_timestamp(v)

    class Settings:
        name = "sync_queue"


class SyncState(Document):
    """Bookkeeping for the last completed sync cycle."""

    key: Indexed(str, unique=True) = "trip_sync"
    last_sync_at: datetime | None = None
    last_result: dict[str, Any] | None = None

    @field_validator("last_sync_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        if v is None:
            return None
        return parse_timestamp(v)

    class Settings:
        name = "sync_state"


class TrackingSettings(Document):
    """User-level tracking preferences."""

    key: Indexed(str, unique=True) = "tracking"
    default_purpose: TripPurpose = TripPurpose.BUSINESS
    auto_tracking_enabled: bool = True
    notifications_enabled: bool = True
    updated_at: datetime | None = None

    class Settings:
        name = "tracking_settings"


ALL_DOCUMENT_MODELS = [
    Trip,
    QueuedOperation,
    SyncState,
    TrackingSettings,
]

__all__ = [
    "ALL_DOCUMENT_MODELS",
    "IN_PROGRESS_LABEL",
    "TRIP_STATUS_ACTIVE",
    "TRIP_STATUS_COMPLETED",
    "OperationType",
    "QueuedOperation",
    "SyncState",
    "TrackingSettings",
    "Trip",
]
