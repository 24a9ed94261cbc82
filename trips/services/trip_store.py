"""Local trip store: durable trip records in the ``trips`` collection."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo.errors import DuplicateKeyError

from date_utils import datetime_to_ms, ensure_utc, get_current_utc_time
from db.models import (
    IN_PROGRESS_LABEL,
    TRIP_STATUS_ACTIVE,
    TRIP_STATUS_COMPLETED,
    Trip,
)
from trips.models import ActiveTrip, CompletedTrip, TripPurpose

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = (
    "user_id",
    "status",
    "start_location",
    "end_location",
    "start_latitude",
    "start_longitude",
    "end_latitude",
    "end_longitude",
    "distance",
    "start_time",
    "end_time",
    "purpose",
    "notes",
    "location_points",
)


class TripStore:
    """Upsert/get/list/delete/stats over the local ``Trip`` documents."""

    @staticmethod
    def build_active(trip: ActiveTrip, user_id: str) -> Trip:
        return Trip(
            trip_id=trip.id,
            user_id=user_id,
            status=TRIP_STATUS_ACTIVE,
            start_location=trip.start_location,
            end_location=IN_PROGRESS_LABEL,
            start_latitude=trip.start_latitude,
            start_longitude=trip.start_longitude,
            end_latitude=trip.last_latitude,
            end_longitude=trip.last_longitude,
            distance=trip.distance,
            start_time=trip.start_time,
            end_time=trip.last_update or trip.start_time,
            purpose=trip.purpose,
            notes=trip.notes or "",
            location_points=list(trip.location_points),
        )

    @staticmethod
    def build_completed(trip: CompletedTrip, user_id: str) -> Trip:
        return Trip(
            trip_id=trip.id,
            user_id=user_id,
            status=TRIP_STATUS_COMPLETED,
            start_location=trip.start_location,
            end_location=trip.end_location,
            start_latitude=trip.start_latitude,
            start_longitude=trip.start_longitude,
            end_latitude=trip.end_latitude,
            end_longitude=trip.end_longitude,
            distance=trip.distance,
            start_time=trip.start_time,
            end_time=trip.end_time,
            purpose=trip.purpose,
            notes=trip.notes or "",
            location_points=list(trip.location_points),
        )

    @staticmethod
    async def upsert(
        trip: Trip,
        *,
        updated_at: datetime | None = None,
    ) -> Trip:
        """Insert or overwrite the record with the same ``trip_id``.

        ``created_at`` and remote bookkeeping survive the overwrite;
        ``updated_at`` is bumped to now unless an explicit value is given.
        """
        stamp = updated_at or get_current_utc_time()
        for _ in range(2):
            existing = await Trip.find_one({"trip_id": trip.trip_id})
            if existing is None:
                trip.updated_at = stamp
                try:
                    await trip.insert()
                except DuplicateKeyError:
                    logger.debug("Concurrent insert for trip %s, retrying", trip.trip_id)
                    continue
                return trip

            for field in _MUTABLE_FIELDS:
                setattr(existing, field, getattr(trip, field))
            existing.updated_at = stamp
            await existing.save()
            return existing

        msg = f"Could not upsert trip {trip.trip_id}"
        raise RuntimeError(msg)

    @staticmethod
    async def save_active(trip: ActiveTrip, user_id: str) -> Trip:
        return await TripStore.upsert(TripStore.build_active(trip, user_id))

    @staticmethod
    async def save_completed(trip: CompletedTrip, user_id: str) -> Trip:
        return await TripStore.upsert(TripStore.build_completed(trip, user_id))

    @staticmethod
    async def get(trip_id: str) -> Trip | None:
        return await Trip.find_one({"trip_id": trip_id})

    @staticmethod
    async def get_active(user_id: str | None = None) -> Trip | None:
        """Most recent in-progress record, if one was left behind."""
        query: dict[str, Any] = {"status": TRIP_STATUS_ACTIVE}
        if user_id:
            query["user_id"] = user_id
        found = await Trip.find(query).sort("-start_time").limit(1).to_list()
        return found[0] if found else None

    @staticmethod
    async def list_by_user(
        user_id: str,
        *,
        start_time: int | None = None,
        end_time: int | None = None,
        purpose: TripPurpose | str | None = None,
        include_active: bool = False,
    ) -> list[Trip]:
        """Trips for a user, newest first, optionally within a start-time range."""
        query: dict[str, Any] = {"user_id": user_id}
        if not include_active:
            query["status"] = TRIP_STATUS_COMPLETED
        time_filter: dict[str, int] = {}
        if start_time is not None:
            time_filter["$gte"] = start_time
        if end_time is not None:
            time_filter["$lte"] = end_time
        if time_filter:
            query["start_time"] = time_filter
        if purpose:
            query["purpose"] = str(purpose)
        return await Trip.find(query).sort("-start_time").to_list()

    @staticmethod
    async def find_by_time_window(
        user_id: str,
        start_time: int,
        end_time: int,
    ) -> Trip | None:
        return await Trip.find_one(
            {"user_id": user_id, "start_time": start_time, "end_time": end_time},
        )

    @staticmethod
    async def delete(trip_id: str) -> bool:
        trip = await Trip.find_one({"trip_id": trip_id})
        if trip is None:
            return False
        await trip.delete()
        logger.info("Deleted local trip %s", trip_id)
        return True

    @staticmethod
    async def update_details(
        trip_id: str,
        *,
        purpose: TripPurpose | None = None,
        notes: str | None = None,
    ) -> Trip | None:
        """Edit the user-mutable fields; the bumped ``updated_at`` queues a re-upload."""
        trip = await Trip.find_one({"trip_id": trip_id})
        if trip is None:
            return None
        if purpose is not None:
            trip.purpose = purpose
        if notes is not None:
            trip.notes = notes
        trip.updated_at = get_current_utc_time()
        await trip.save()
        return trip

    @staticmethod
    async def list_pending_upload(user_id: str) -> list[Trip]:
        """Completed trips never synced or modified since their last sync."""
        trips = await Trip.find(
            {"user_id": user_id, "status": TRIP_STATUS_COMPLETED},
        ).sort("+start_time").to_list()
        return [trip for trip in trips if TripStore.needs_upload(trip)]

    @staticmethod
    def needs_upload(trip: Trip) -> bool:
        if trip.synced_at is None:
            return True
        return ensure_utc(trip.updated_at) > ensure_utc(trip.synced_at)

    @staticmethod
    async def mark_synced(trip: Trip, remote_id: str | None) -> Trip:
        """
        Record that the version of ``trip`` held in memory reached the remote store.

        Only ``remote_id`` and ``synced_at`` are written. When the stored record
        was edited after ``trip`` was read, ``synced_at`` is left alone so the
        edit is still uploaded next cycle.
        """
        current = await Trip.find_one({"trip_id": trip.trip_id})
        if current is None:
            return trip
        changes: dict[str, Any] = {}
        if remote_id:
            changes["remote_id"] = remote_id
        if datetime_to_ms(current.updated_at) <= datetime_to_ms(trip.updated_at):
            changes["synced_at"] = ensure_utc(current.updated_at)
        else:
            logger.info("Trip %s changed during sync; keeping it pending", trip.trip_id)
        if changes:
            await current.set(changes)
        return current

    @staticmethod
    async def stats_by_purpose(
        user_id: str,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> dict[str, Any]:
        """Trip counts and mileage grouped by purpose."""
        trips = await TripStore.list_by_user(
            user_id,
            start_time=start_time,
            end_time=end_time,
        )
        by_purpose: dict[str, dict[str, float]] = {
            purpose.value: {"trips": 0, "distance": 0.0} for purpose in TripPurpose
        }
        for trip in trips:
            bucket = by_purpose.setdefault(
                str(trip.purpose),
                {"trips": 0, "distance": 0.0},
            )
            bucket["trips"] += 1
            bucket["distance"] += trip.distance or 0.0

        for bucket in by_purpose.values():
            bucket["distance"] = round(bucket["distance"], 2)

        return {
            "total_trips": len(trips),
            "total_distance": round(sum(t.distance or 0.0 for t in trips), 2),
            "by_purpose": by_purpose,
        }


__all__ = ["TripStore"]
