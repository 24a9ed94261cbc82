"""Trip services module."""

from trips.services.trip_store import TripStore

__all__ = ["TripStore"]
