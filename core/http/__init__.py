"""HTTP client utilities and session management."""

from core.http.circuit_breaker import CircuitBreaker, CircuitOpen, CircuitState
from core.http.geocoding import Geocoder, NominatimGeocoder, format_coordinates
from core.http.nominatim import NominatimClient
from core.http.request import request_json
from core.http.retry import retry_async, retry_fixed
from core.http.session import cleanup_session, get_session

__all__ = [
    "CircuitBreaker",
    "CircuitOpen",
    "CircuitState",
    "Geocoder",
    "NominatimClient",
    "NominatimGeocoder",
    "cleanup_session",
    "format_coordinates",
    "get_session",
    "request_json",
    "retry_async",
    "retry_fixed",
]
