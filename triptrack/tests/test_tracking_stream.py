"""
WebSocket streaming tests.

`stream_tracking` is driven with a fake socket so the lifecycle
(disconnect, terminal booking, deadline) can be observed directly.
"""

import asyncio
import pytest
from fastapi import WebSocketDisconnect

from triptrack.app.api.v1.endpoints.tracking import stream_tracking
from triptrack.app.models.trip_enums import BookingStatus
from triptrack.app.services.booking_ledger import set_booking_status
from triptrack.app.services.realtime import request_topic, trip_topic


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.closed = False
        self.frames = []
        self.gone = asyncio.Event()

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.frames.append(data)

    async def receive_text(self):
        await self.gone.wait()
        raise WebSocketDisconnect(code=1000)

    async def close(self, code=1000):
        self.closed = True


async def wait_for_frames(websocket, count, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(websocket.frames) < count:
        if loop.time() > deadline:
            raise AssertionError(f"expected {count} frames, got {len(websocket.frames)}")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_client_disconnect_releases_subscription(booking, session_factory, change_feed, eta_engine):
    websocket = FakeWebSocket()
    stream = asyncio.create_task(
        stream_tracking(websocket, booking.request_id, session_factory, change_feed, eta_engine)
    )

    await wait_for_frames(websocket, 1)
    assert websocket.accepted
    assert websocket.frames[0]["request_id"] == booking.request_id
    assert change_feed.subscriber_count(request_topic(booking.request_id)) == 1

    websocket.gone.set()
    await asyncio.wait_for(stream, 2)

    assert change_feed.subscriber_count(request_topic(booking.request_id)) == 0
    assert change_feed.subscriber_count(trip_topic(booking.trip_id)) == 0
    # The client already left; nothing to close
    assert websocket.closed is False


@pytest.mark.asyncio
async def test_finished_booking_ends_stream(db_session, booking, session_factory, change_feed, eta_engine):
    websocket = FakeWebSocket()
    stream = asyncio.create_task(
        stream_tracking(websocket, booking.request_id, session_factory, change_feed, eta_engine)
    )
    await wait_for_frames(websocket, 1)

    await set_booking_status(db_session, booking.request_id, BookingStatus.COMPLETED, feed=change_feed)
    await asyncio.wait_for(stream, 2)

    assert websocket.frames[-1]["message"] == "trip_finished"
    assert websocket.closed is True
    assert change_feed.subscriber_count(request_topic(booking.request_id)) == 0


@pytest.mark.asyncio
async def test_deadline_closes_stream(booking, session_factory, change_feed, eta_engine):
    websocket = FakeWebSocket()
    await asyncio.wait_for(
        stream_tracking(
            websocket, booking.request_id, session_factory, change_feed, eta_engine, deadline_seconds=0.05
        ),
        2,
    )

    assert len(websocket.frames) == 1
    assert websocket.closed is True
    assert change_feed.subscriber_count(request_topic(booking.request_id)) == 0
