"""Shared numeric constants."""

from typing import Final

# Outbound HTTP (geocoder, remote trip store)
HTTP_CONNECTION_LIMIT: Final[int] = 10
HTTP_TIMEOUT_CONNECT: Final[float] = 5.0
HTTP_TIMEOUT_SOCK_READ: Final[float] = 20.0
HTTP_TIMEOUT_TOTAL: Final[float] = 30.0

# Distance / speed
EARTH_RADIUS_MILES: Final[float] = 3959.0
EARTH_RADIUS_KM: Final[float] = 6371.0
MPS_TO_MPH: Final[float] = 2.23694
MS_PER_HOUR: Final[int] = 60 * 60 * 1000
