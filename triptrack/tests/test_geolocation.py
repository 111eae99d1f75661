"""
Device geolocation and driver location reporter tests.
"""

import asyncio
import json

import httpx
import pytest

from triptrack.app.services.driver_reporter import LIVE_STATUS_PATH, DriverLocationReporter
from triptrack.app.services.geolocation import (
    GeolocationDenied,
    GeolocationTimeout,
    GeolocationUnavailable,
    acquire_position,
    compose_location_share,
)


class StubProvider:
    def __init__(self, position=(1.0, 2.0), error=None, delay=0.0):
        self.position = position
        self.error = error
        self.delay = delay
        self.calls = 0

    async def request_position(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.position


@pytest.mark.asyncio
async def test_acquire_position():
    assert await acquire_position(StubProvider(), timeout_ms=100) == (1.0, 2.0)


@pytest.mark.asyncio
async def test_slow_provider_times_out():
    with pytest.raises(GeolocationTimeout):
        await acquire_position(StubProvider(delay=1.0), timeout_ms=20)


@pytest.mark.asyncio
async def test_failures_are_classified():
    with pytest.raises(GeolocationDenied):
        await acquire_position(StubProvider(error=PermissionError("denied")), timeout_ms=100)
    with pytest.raises(GeolocationUnavailable):
        await acquire_position(StubProvider(error=OSError("no fix")), timeout_ms=100)


@pytest.mark.asyncio
async def test_share_uses_maps_link_when_position_known():
    share = await compose_location_share(StubProvider(), "https://app.test/share/abc", timeout_ms=100)
    assert share.url == "https://www.google.com/maps?q=1.0,2.0"
    assert share.used_fallback is False


@pytest.mark.asyncio
async def test_share_falls_back_to_tracking_link():
    share = await compose_location_share(
        StubProvider(error=PermissionError("denied")), "https://app.test/share/abc", timeout_ms=100
    )
    assert share.url == "https://app.test/share/abc"
    assert share.used_fallback is True


class ApiRecorder:
    def __init__(self, status_code=200):
        self.requests = []
        self.status_code = status_code

    def __call__(self, request):
        self.requests.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(self.status_code, json={})


def make_reporter(provider, recorder, clock=None, **kwargs):
    client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(recorder))
    return DriverLocationReporter(
        client, provider, min_interval=10, timeout_ms=100, clock=clock or (lambda: 0.0), **kwargs
    )


@pytest.mark.asyncio
async def test_pushes_are_rate_limited():
    now = [0.0]
    recorder = ApiRecorder()
    reporter = make_reporter(StubProvider(), recorder, clock=lambda: now[0])

    assert await reporter.report() is True
    now[0] = 5.0
    assert await reporter.report() is False
    now[0] = 10.0
    assert await reporter.report() is True

    assert reporter.pushes == 2
    assert recorder.requests[0] == ("PUT", LIVE_STATUS_PATH, {"is_available": True, "lat": 1.0, "lng": 2.0})


@pytest.mark.asyncio
async def test_reporter_shares_current_position():
    recorder = ApiRecorder()
    reporter = make_reporter(StubProvider(position=(3.5, 4.5)), recorder)

    share = await reporter.share_location("https://app.test/share/abc")

    assert share.url == "https://www.google.com/maps?q=3.5,4.5"
    assert share.used_fallback is False
    # Sharing never pushes live status
    assert recorder.requests == []

    reporter.provider.error = PermissionError("denied")
    share = await reporter.share_location("https://app.test/share/abc")
    assert share.url == "https://app.test/share/abc"
    assert share.used_fallback is True


@pytest.mark.asyncio
async def test_denied_permission_stops_and_goes_unavailable():
    recorder = ApiRecorder()
    reporter = make_reporter(StubProvider(error=PermissionError("denied")), recorder)

    await asyncio.wait_for(reporter.run(), 1)

    assert reporter.running is False
    assert recorder.requests == [("PUT", LIVE_STATUS_PATH, {"is_available": False})]


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    recorder = ApiRecorder(status_code=503)
    provider = StubProvider()
    rounds = []

    async def fake_sleep(seconds):
        rounds.append(seconds)
        if len(rounds) == 2:
            provider.error = PermissionError("denied")

    now = [0.0]

    def clock():
        now[0] += 10
        return now[0]

    reporter = make_reporter(provider, recorder, clock=clock, sleep=fake_sleep)
    await asyncio.wait_for(reporter.run(), 1)

    assert rounds == [10, 10]
    assert provider.calls == 3
    # Two failed pushes, then the final "unavailable"
    assert [body["is_available"] for _, _, body in recorder.requests] == [True, True, False]
