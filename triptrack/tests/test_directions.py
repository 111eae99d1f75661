"""
Directions client tests against a mocked provider.
"""

import httpx
import pytest

from triptrack.app.core.exceptions import RoutingUnavailableError
from triptrack.app.core.reliability import CircuitBreaker
from triptrack.app.services.directions import DirectionsClient


OK_PAYLOAD = {
    "status": "OK",
    "routes": [{
        "legs": [
            {"duration": {"value": 300, "text": "5 mins"}, "distance": {"value": 2000, "text": "2 km"}},
            {"duration": {"value": 450, "text": "8 mins"}, "distance": {"value": 4100, "text": "4.1 km"}},
        ],
        "overview_polyline": {"points": "_p~iF~ps|U_ulLnnqC"},
    }],
}


def make_client(handler, breaker=None, api_key="test-key"):
    return DirectionsClient(
        base_url="https://maps.test/api",
        api_key=api_key,
        timeout=1,
        breaker=breaker or CircuitBreaker("test", failure_threshold=2, reset_timeout=60),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_route_parses_legs_and_path():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=OK_PAYLOAD)

    client = make_client(handler)
    result = await client.route((0.0, 0.0), (2.0, 2.0), [(1.0, 1.0), (1.5, 1.5)])

    assert [(leg.duration_seconds, leg.distance_meters) for leg in result.legs] == [(300, 2000), (450, 4100)]
    assert result.renderable_path == "_p~iF~ps|U_ulLnnqC"

    params = seen[0].url.params
    assert seen[0].url.path == "/api/directions/json"
    assert params["origin"] == "0.0,0.0"
    assert params["destination"] == "2.0,2.0"
    assert params["waypoints"] == "1.0,1.0|1.5,1.5"
    assert params["key"] == "test-key"


@pytest.mark.asyncio
async def test_no_waypoints_param_without_via():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=OK_PAYLOAD)

    await make_client(handler).route((0.0, 0.0), (2.0, 2.0))
    assert "waypoints" not in seen[0].url.params


@pytest.mark.asyncio
async def test_missing_key_never_calls_provider():
    def handler(request):
        raise AssertionError("provider must not be called")

    with pytest.raises(RoutingUnavailableError):
        await make_client(handler, api_key="").route((0.0, 0.0), (1.0, 1.0))


@pytest.mark.asyncio
async def test_non_ok_status_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={"status": "ZERO_RESULTS", "routes": []})

    with pytest.raises(RoutingUnavailableError):
        await make_client(handler).route((0.0, 0.0), (1.0, 1.0))


@pytest.mark.asyncio
async def test_http_error_is_unavailable():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(RoutingUnavailableError):
        await make_client(handler).route((0.0, 0.0), (1.0, 1.0))


@pytest.mark.asyncio
async def test_malformed_payload_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={"status": "OK", "routes": [{"legs": [{"duration": {}}]}]})

    with pytest.raises(RoutingUnavailableError):
        await make_client(handler).route((0.0, 0.0), (1.0, 1.0))


@pytest.mark.asyncio
async def test_open_circuit_stops_calling_provider():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused")

    breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)
    client = make_client(handler, breaker=breaker)

    for _ in range(2):
        with pytest.raises(RoutingUnavailableError):
            await client.route((0.0, 0.0), (1.0, 1.0))
    assert breaker.state == "OPEN"

    with pytest.raises(RoutingUnavailableError):
        await client.route((0.0, 0.0), (1.0, 1.0))
    assert len(calls) == 2
