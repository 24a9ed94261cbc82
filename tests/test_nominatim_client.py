from unittest.mock import AsyncMock

import pytest

from core.exceptions import ExternalServiceError
from core.http.geocoding import NominatimGeocoder, format_coordinates
from core.http.nominatim import NominatimClient
from tests.http_fakes import FakeResponse, FakeSession


@pytest.mark.asyncio
async def test_nominatim_reverse_returns_json(monkeypatch: pytest.MonkeyPatch) -> None:
    response = FakeResponse(status=200, json_data={"place_id": 42})
    session = FakeSession(get_responses=[response])
    monkeypatch.setattr(
        "core.http.nominatim.get_session",
        AsyncMock(return_value=session),
    )

    client = NominatimClient(reverse_url="https://geo.test/reverse")
    result = await client.reverse(31.5, -97.1)

    assert result == {"place_id": 42}
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == "https://geo.test/reverse"
    assert kwargs["params"]["lat"] == 31.5
    assert kwargs["params"]["format"] == "jsonv2"
    assert "User-Agent" in kwargs["headers"]


@pytest.mark.asyncio
async def test_nominatim_reverse_returns_none_on_404(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = FakeResponse(status=404, text_data="not found")
    session = FakeSession(get_responses=[response])
    monkeypatch.setattr(
        "core.http.nominatim.get_session",
        AsyncMock(return_value=session),
    )

    client = NominatimClient()
    result = await client.reverse(31.5, -97.1)

    assert result is None


@pytest.mark.asyncio
async def test_nominatim_reverse_treats_error_payload_as_no_result(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = FakeResponse(status=200, json_data={"error": "Unable to geocode"})
    session = FakeSession(get_responses=[response])
    monkeypatch.setattr(
        "core.http.nominatim.get_session",
        AsyncMock(return_value=session),
    )

    assert await NominatimClient().reverse(0.0, 0.0) is None


@pytest.mark.asyncio
async def test_nominatim_reverse_raises_on_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    response = FakeResponse(status=500, text_data="oops")
    session = FakeSession(get_responses=[response])
    monkeypatch.setattr(
        "core.http.nominatim.get_session",
        AsyncMock(return_value=session),
    )

    client = NominatimClient()

    with pytest.raises(ExternalServiceError) as raised:
        await client.reverse(31.5, -97.1)

    assert "Nominatim reverse" in raised.value.message


def test_format_address_builds_short_label() -> None:
    result = {
        "name": "Baylor University",
        "display_name": "Baylor University, Waco, Texas, United States",
        "address": {
            "house_number": "1311",
            "road": "S 5th St",
            "city": "Waco",
            "state": "Texas",
            "postcode": "76706",
        },
    }

    assert (
        NominatimClient.format_address(result)
        == "Baylor University, 1311 S 5th St, Waco, Texas, 76706"
    )


def test_format_address_drops_duplicate_name_and_falls_back() -> None:
    road_only = {"name": "Main St", "address": {"road": "Main St", "town": "Hewitt"}}
    bare = {"display_name": "Somewhere", "address": {}}

    assert NominatimClient.format_address(road_only) == "Main St, Hewitt"
    assert NominatimClient.format_address(bare) == "Somewhere"
    assert NominatimClient.format_address(None) == ""


@pytest.mark.asyncio
async def test_geocoder_falls_back_to_coordinates() -> None:
    client = NominatimClient()
    client.reverse = AsyncMock(side_effect=ExternalServiceError("down"))
    empty = NominatimClient()
    empty.reverse = AsyncMock(return_value=None)

    assert await NominatimGeocoder(client).reverse_geocode(31.5, -97.1) == format_coordinates(31.5, -97.1)
    assert await NominatimGeocoder(empty).reverse_geocode(31.5, -97.1) == "31.5000, -97.1000"
