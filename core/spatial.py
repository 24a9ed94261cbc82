"""
Spatial utilities.

Centralizes coordinate validation, great-circle distance and the speed
estimates the driving detector relies on.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from core.constants import EARTH_RADIUS_KM, EARTH_RADIUS_MILES, MPS_TO_MPH, MS_PER_HOUR

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class GeometryService:
    """Authoritative geometry operations for the application."""

    @staticmethod
    def validate_coordinate_pair(
        coord: Sequence[Any],
    ) -> tuple[bool, list[float] | None]:
        """Validate a [lat, lon] coordinate pair."""
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            return False, None
        try:
            lat = float(coord[0])
            lon = float(coord[1])
        except (TypeError, ValueError, IndexError):
            return False, None
        if math.isnan(lat) or math.isnan(lon):
            return False, None
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            return False, None
        return True, [lat, lon]

    @staticmethod
    def haversine_distance(
        lat1: float,
        lon1: float,
        lat2: float,
        lon2: float,
        unit: str = "miles",
    ) -> float:
        """Great-circle distance rounded to 2 decimal places."""
        if unit == "miles":
            radius = EARTH_RADIUS_MILES
        elif unit == "km":
            radius = EARTH_RADIUS_KM
        else:
            msg = "Invalid unit. Use 'miles' or 'km'."
            raise ValueError(msg)

        dphi = math.radians(lat2 - lat1)
        dlmb = math.radians(lon2 - lon1)
        a = (
            math.sin(dphi / 2) ** 2
            + math.cos(math.radians(lat1))
            * math.cos(math.radians(lat2))
            * math.sin(dlmb / 2) ** 2
        )
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return round(radius * c, 2)

    @staticmethod
    def implied_speed_mph(distance_miles: float, elapsed_ms: float) -> float:
        """Average speed over a segment; no elapsed time means no speed signal."""
        if elapsed_ms <= 0:
            return 0.0
        return distance_miles / (elapsed_ms / MS_PER_HOUR)

    @staticmethod
    def device_speed_mph(speed_mps: float | None) -> float | None:
        """Convert a device speed reading, ignoring missing or non-positive ones."""
        if speed_mps is None or speed_mps <= 0:
            return None
        return speed_mps * MPS_TO_MPH

    @staticmethod
    def resolve_speed_mph(
        *,
        latitude: float,
        longitude: float,
        timestamp: int,
        device_speed_mps: float | None = None,
        previous: tuple[float, float, int] | None = None,
    ) -> float:
        """
        Pick the speed for a sample.

        A positive device reading wins; otherwise the speed is derived from the
        previous (lat, lon, timestamp) fix.
        """
        device_mph = GeometryService.device_speed_mph(device_speed_mps)
        if device_mph is not None:
            return device_mph
        if previous is None:
            return 0.0
        prev_lat, prev_lon, prev_ts = previous
        distance = GeometryService.haversine_distance(
            prev_lat,
            prev_lon,
            latitude,
            longitude,
        )
        return GeometryService.implied_speed_mph(distance, timestamp - prev_ts)


__all__ = ["GeometryService"]
