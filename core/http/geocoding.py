"""
Reverse geocoding with a coordinate fallback.

Trip start/end addresses must never block or break trip detection, so any
failure degrades to a ``"lat, lon"`` label instead of raising.
"""

from __future__ import annotations

import logging
from typing import Protocol

from core.http.nominatim import NominatimClient

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def reverse_geocode(self, lat: float, lon: float) -> str: ...


def format_coordinates(lat: float, lon: float) -> str:
    return f"{lat:.4f}, {lon:.4f}"


class NominatimGeocoder:
    """Geocoder collaborator backed by :class:`NominatimClient`."""

    def __init__(self, client: NominatimClient | None = None) -> None:
        self._client = client or NominatimClient()

    async def reverse_geocode(self, lat: float, lon: float) -> str:
        try:
            result = await self._client.reverse(lat, lon)
        except Exception as exc:
            logger.warning(
                "Reverse geocoding failed for %.5f, %.5f: %s",
                lat,
                lon,
                exc,
            )
            return format_coordinates(lat, lon)
        label = NominatimClient.format_address(result)
        return label or format_coordinates(lat, lon)


__all__ = ["Geocoder", "NominatimGeocoder", "format_coordinates"]
