"""Pydantic models for trips, samples and trip-control results."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from date_utils import datetime_to_ms, parse_timestamp


class TripPurpose(StrEnum):
    BUSINESS = "business"
    PERSONAL = "personal"
    MEDICAL = "medical"
    CHARITY = "charity"
    OTHER = "other"


class GeoSample(BaseModel):
    """A single location fix delivered by the geo sample source.

    ``speed`` is the device reading in metres/second; missing or non-positive
    values mean the device had no speed and it is derived instead.
    """

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float | None = None
    timestamp: int

    model_config = ConfigDict(extra="ignore")

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:
        """Accept ms epochs, ISO strings and datetimes."""
        if isinstance(v, str) and not v.strip().lstrip("-").isdigit():
            parsed = parse_timestamp(v)
            if parsed is None:
                msg = f"Unparseable timestamp: {v!r}"
                raise ValueError(msg)
            return datetime_to_ms(parsed)
        if hasattr(v, "tzinfo"):
            return datetime_to_ms(v)
        return v


class LocationPoint(BaseModel):
    latitude: float
    longitude: float
    timestamp: int


class ActiveTrip(BaseModel):
    """The single in-progress trip owned by the driving detector."""

    id: str
    start_location: str
    start_latitude: float
    start_longitude: float
    start_time: int
    purpose: TripPurpose = TripPurpose.BUSINESS
    notes: str | None = None
    distance: float = 0.0
    last_latitude: float
    last_longitude: float
    location_points: list[LocationPoint] = Field(default_factory=list)
    last_update: int | None = None

    def complete(
        self,
        *,
        end_location: str,
        end_latitude: float,
        end_longitude: float,
        end_time: int,
    ) -> CompletedTrip:
        return CompletedTrip(
            **self.model_dump(exclude={"last_update"}),
            end_location=end_location,
            end_latitude=end_latitude,
            end_longitude=end_longitude,
            end_time=max(end_time, self.start_time),
        )


class CompletedTrip(BaseModel):
    """A finished trip as written to the local trip store."""

    id: str
    start_location: str
    start_latitude: float
    start_longitude: float
    start_time: int
    purpose: TripPurpose = TripPurpose.BUSINESS
    notes: str | None = None
    distance: float = 0.0
    last_latitude: float | None = None
    last_longitude: float | None = None
    location_points: list[LocationPoint] = Field(default_factory=list)
    end_location: str
    end_latitude: float
    end_longitude: float
    end_time: int

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def check_time_order(self) -> CompletedTrip:
        if self.end_time < self.start_time:
            msg = "End time must not be before start time"
            raise ValueError(msg)
        return self


class TripActionStatus(StrEnum):
    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    COMPLETED = "completed"
    DISCARDED = "discarded"
    NO_ACTIVE_TRIP = "no_active_trip"
    SAVE_FAILED = "save_failed"
    RESOLVED = "resolved"


class TripActionResult(BaseModel):
    """Outcome of a trip-control operation, reported instead of raising."""

    status: TripActionStatus
    message: str = ""
    active_trip: ActiveTrip | None = None
    completed_trip: CompletedTrip | None = None

    @property
    def ok(self) -> bool:
        return self.status not in {
            TripActionStatus.NO_ACTIVE_TRIP,
            TripActionStatus.SAVE_FAILED,
        }


class RecoveryState(StrEnum):
    NONE = "none"
    RESUMABLE = "resumable"
    ORPHANED = "orphaned"


class RecoveryReport(BaseModel):
    """Classification of a trip found in storage on process start."""

    state: RecoveryState = RecoveryState.NONE
    trip: ActiveTrip | None = None
    age_ms: int = 0
    needs_attention: bool = False

    @property
    def trip_id(self) -> str | None:
        return self.trip.id if self.trip else None

    @property
    def distance(self) -> float:
        return self.trip.distance if self.trip else 0.0


class ActiveTripStatus(BaseModel):
    """What UI collaborators see when they query the active-trip slot."""

    trip: ActiveTrip | None = None
    feed_running: bool = False
    orphaned: bool = False
    age_ms: int = 0
    needs_attention: bool = False


class TripDetailsUpdate(BaseModel):
    """User-editable fields of a stored trip."""

    purpose: TripPurpose | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ManualTripStart(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    start_location: str | None = None
    purpose: TripPurpose | None = None
    notes: str | None = Field(default=None, max_length=1000)


class TrackingSettingsUpdate(BaseModel):
    default_purpose: TripPurpose | None = None
    auto_tracking_enabled: bool | None = None
    notifications_enabled: bool | None = None
