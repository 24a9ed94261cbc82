"""
Nominatim HTTP client utilities.

Reverse geocoding for trip start and end addresses.
"""

from __future__ import annotations

import logging
from typing import Any

from config import NOMINATIM_USER_AGENT, get_nominatim_reverse_url
from core.exceptions import ExternalServiceError
from core.http.circuit_breaker import nominatim_breaker, with_circuit_breaker
from core.http.request import request_json
from core.http.retry import retry_async
from core.http.session import get_session

logger = logging.getLogger(__name__)

_CITY_KEYS = ("city", "town", "village", "hamlet", "municipality")


class NominatimClient:
    def __init__(
        self,
        *,
        reverse_url: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._reverse_url = reverse_url or get_nominatim_reverse_url()
        self._user_agent = user_agent or NOMINATIM_USER_AGENT

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._user_agent}

    @with_circuit_breaker(nominatim_breaker)
    @retry_async(max_retries=2, retry_delay=0.5)
    async def reverse(
        self,
        lat: float,
        lon: float,
        *,
        zoom: int = 18,
    ) -> dict[str, Any] | None:
        params = {
            "format": "jsonv2",
            "lat": lat,
            "lon": lon,
            "zoom": zoom,
            "addressdetails": 1,
        }
        session = await get_session()
        data = await request_json(
            "GET",
            self._reverse_url,
            session=session,
            params=params,
            headers=self._headers(),
            service_name="Nominatim reverse",
            none_on=(404,),
        )
        if data is None:
            return None
        if not isinstance(data, dict):
            msg = "Nominatim reverse error: unexpected response"
            raise ExternalServiceError(msg, {"url": self._reverse_url})
        if data.get("error"):
            return None
        return data

    @staticmethod
    def format_address(result: dict[str, Any] | None) -> str:
        """
        Build a short "name, street, city, state, postcode" label.

        Returns an empty string when the result carries nothing usable.
        """
        if not result:
            return ""
        address = result.get("address") or {}
        street = " ".join(
            part
            for part in (address.get("house_number"), address.get("road"))
            if part
        )
        name = result.get("name") or ""
        if name and name == address.get("road"):
            name = ""
        city = next((address[key] for key in _CITY_KEYS if address.get(key)), "")
        parts = [name, street, city, address.get("state"), address.get("postcode")]
        label = ", ".join(part for part in parts if part)
        return label or str(result.get("display_name") or "")
