# tests/test_airline_api.py
import httpx
import pytest

import tools.airline_api as airline_api
from core.exceptions import ProviderError


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr("tools.airline_api.FLIGHT_API_KEY", "test-key")


@pytest.mark.asyncio
async def test_request_shape_and_payload(monkeypatch, api_key):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json={"status": True, "data": {"itineraries": {}}})

    client = _mock_client(handler)
    monkeypatch.setattr("tools.airline_api.get_client", lambda: client)

    data = await airline_api.search_flights("lax", "nrt", "2025-07-01")

    request = seen["request"]
    assert request.url.path.endswith("/searchFlights")
    assert request.url.params["departure_id"] == "LAX"
    assert request.url.params["arrival_id"] == "NRT"
    assert request.url.params["travel_class"] == "ECONOMY"
    assert request.url.params["adults"] == "1"
    assert request.url.params["currency"] == "USD"
    assert request.url.params["outbound_date"] == "2025-07-01"
    assert request.headers["x-rapidapi-key"] == "test-key"
    assert data["status"] is True
    await client.aclose()


@pytest.mark.asyncio
async def test_status_false_raises_provider_error(monkeypatch, api_key):
    client = _mock_client(lambda request: httpx.Response(200, json={"status": False, "message": "Invalid date"}))
    monkeypatch.setattr("tools.airline_api.get_client", lambda: client)

    with pytest.raises(ProviderError) as exc:
        await airline_api.search_flights("LAX", "NRT", "2020-01-01")

    assert exc.value.message == "Invalid date"
    await client.aclose()


@pytest.mark.asyncio
async def test_client_error_is_not_retried(monkeypatch, api_key):
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(403, json={"message": "forbidden"})

    client = _mock_client(handler)
    monkeypatch.setattr("tools.airline_api.get_client", lambda: client)

    with pytest.raises(airline_api.AirlineAPIError):
        await airline_api.search_flights("LAX", "NRT", "2025-07-01")

    assert calls == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_key(monkeypatch):
    monkeypatch.setattr("tools.airline_api.FLIGHT_API_KEY", None)

    with pytest.raises(airline_api.AirlineAPIError):
        await airline_api.search_flights("LAX", "NRT", "2025-07-01")

    assert await airline_api.health_check() == "fail"
