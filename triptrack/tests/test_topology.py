"""
Topology store tests: effective stops and route stop management.
"""

import pytest
from sqlalchemy import select

from triptrack.app.core.exceptions import InvalidTopologyError, ResourceNotFoundError
from triptrack.app.models.audit_log import AuditLog
from triptrack.app.models.booking import Booking
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip_enums import BookingStatus, StopKind, TripType
from triptrack.app.schemas.route import AnchorInput, RouteCreate, StopInput
from triptrack.app.services.topology import (
    create_route,
    effective_stops,
    list_route_stops,
    load_effective_stops,
    replace_route_stops,
    validate_stop_sequence,
)
from triptrack.app.services.trip_scheduler import get_trip


def make_stop(stop_id, order_index, kind):
    return Stop(id=stop_id, route_id=1, name=f"S{stop_id}", lat=1.0, lng=1.0, order_index=order_index, kind=kind)


ROUTE_STOPS = [
    make_stop(3, 2, StopKind.DROPOFF),
    make_stop(1, 0, StopKind.PICKUP),
    make_stop(2, 1, StopKind.BOTH),
]


def test_departure_keeps_pickup_capable_stops_in_order():
    result = effective_stops(ROUTE_STOPS, [], False, TripType.DEPARTURE)
    assert [stop.id for stop in result] == [1, 2]


def test_arrival_keeps_dropoff_capable_stops_in_order():
    result = effective_stops(ROUTE_STOPS, [], False, TripType.ARRIVAL)
    assert [stop.id for stop in result] == [2, 3]


def test_override_replaces_route_defaults():
    overrides = [make_stop(9, 5, StopKind.BOTH), make_stop(8, 4, StopKind.PICKUP)]
    result = effective_stops(ROUTE_STOPS, overrides, True, TripType.DEPARTURE)
    assert [stop.id for stop in result] == [8, 9]


def test_override_flag_without_stops_yields_nothing():
    assert effective_stops(ROUTE_STOPS, [], True, TripType.ARRIVAL) == []


def test_stop_sequence_must_strictly_increase():
    stops = [
        StopInput(name="A", lat=1, lng=1, order_index=0),
        StopInput(name="B", lat=1, lng=1, order_index=0),
    ]
    with pytest.raises(InvalidTopologyError):
        validate_stop_sequence(stops)


def test_stop_sequence_accepts_gaps():
    stops = [
        StopInput(name="A", lat=1, lng=1, order_index=0),
        StopInput(name="B", lat=1, lng=1, order_index=5),
        StopInput(name="C", lat=1, lng=1, order_index=10),
    ]
    validate_stop_sequence(stops)


def test_stop_sequence_rejects_out_of_range_coordinates():
    stop = StopInput.model_construct(name="X", lat=95.0, lng=1.0, order_index=0, kind=StopKind.BOTH)
    with pytest.raises(InvalidTopologyError):
        validate_stop_sequence([stop])


@pytest.mark.asyncio
async def test_create_route_persists_stops_and_audit(db_session, change_feed, staff_user):
    payload = RouteCreate(
        name="North Loop",
        start=AnchorInput(name="Depot", lat=0, lng=0),
        end=AnchorInput(name="Gate", lat=1, lng=1),
        stops=[
            StopInput(name="A", lat=0.2, lng=0.2, order_index=0, kind=StopKind.PICKUP),
            StopInput(name="B", lat=0.5, lng=0.5, order_index=1),
        ],
    )
    route = await create_route(db_session, payload, actor=staff_user, feed=change_feed)

    result = await db_session.execute(select(Stop).where(Stop.route_id == route.id).order_by(Stop.order_index))
    assert [stop.name for stop in result.scalars().all()] == ["A", "B"]

    result = await db_session.execute(select(AuditLog).where(AuditLog.action == "ROUTE_CREATED"))
    audit = result.scalar_one()
    assert audit.actor_id == staff_user["user_id"]


@pytest.mark.asyncio
async def test_replace_route_stops_updates_trips_without_override(db_session, change_feed, topology):
    subscription = await change_feed.subscribe([f"route:{topology.route_id}"])

    await replace_route_stops(
        db_session,
        topology.route_id,
        [
            StopInput(name="X", lat=1.1, lng=1.1, order_index=0, kind=StopKind.BOTH),
            StopInput(name="Y", lat=1.2, lng=1.2, order_index=1, kind=StopKind.PICKUP),
        ],
        feed=change_feed,
    )

    trip = await get_trip(db_session, topology.departure_trip_id)
    stops = await load_effective_stops(db_session, trip)
    assert [stop.name for stop in stops] == ["X", "Y"]

    event = await subscription.__anext__()
    assert event.table == "stops"
    assert event.topic == f"route:{topology.route_id}"
    await subscription.close()


@pytest.mark.asyncio
async def test_removed_stop_falls_back_to_trip_default(db_session, topology, booking):
    await replace_route_stops(
        db_session,
        topology.route_id,
        [StopInput(name="Only", lat=1.1, lng=1.1, order_index=0)],
    )

    result = await db_session.execute(select(Booking).where(Booking.request_id == booking.request_id))
    row = result.scalar_one()
    await db_session.refresh(row)
    assert row.selected_dropoff_stop_id is None
    assert row.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_resaving_renamed_stops_keeps_booking_selection(db_session, topology, booking):
    await replace_route_stops(
        db_session,
        topology.route_id,
        [
            StopInput(name="A2", lat=1.0, lng=1.0, order_index=0, kind=StopKind.PICKUP),
            StopInput(name="B", lat=1.5, lng=1.5, order_index=1, kind=StopKind.BOTH),
            StopInput(name="C", lat=2.0, lng=2.0, order_index=2, kind=StopKind.DROPOFF),
        ],
    )

    result = await db_session.execute(select(Booking).where(Booking.request_id == booking.request_id))
    row = result.scalar_one()
    await db_session.refresh(row)
    assert row.selected_dropoff_stop_id == topology.stop_c

    stops = await list_route_stops(db_session, topology.route_id)
    assert [(stop.id, stop.name) for stop in stops] == [
        (topology.stop_a, "A2"), (topology.stop_b, "B"), (topology.stop_c, "C")
    ]


@pytest.mark.asyncio
async def test_stops_edited_by_id_can_be_reordered(db_session, topology, booking):
    await replace_route_stops(
        db_session,
        topology.route_id,
        [
            StopInput(id=topology.stop_b, name="B", lat=1.6, lng=1.6, order_index=0, kind=StopKind.BOTH),
            StopInput(id=topology.stop_a, name="A", lat=1.0, lng=1.0, order_index=1, kind=StopKind.PICKUP),
            StopInput(id=topology.stop_c, name="C moved", lat=2.2, lng=2.2, order_index=2, kind=StopKind.DROPOFF),
            StopInput(name="D", lat=2.5, lng=2.5, order_index=3, kind=StopKind.DROPOFF),
        ],
    )

    stops = await list_route_stops(db_session, topology.route_id)
    assert [stop.id for stop in stops[:3]] == [topology.stop_b, topology.stop_a, topology.stop_c]
    assert stops[3].name == "D"

    result = await db_session.execute(select(Booking).where(Booking.request_id == booking.request_id))
    row = result.scalar_one()
    await db_session.refresh(row)
    assert row.selected_dropoff_stop_id == topology.stop_c


@pytest.mark.asyncio
async def test_foreign_stop_id_is_rejected(db_session, topology):
    with pytest.raises(InvalidTopologyError):
        await replace_route_stops(
            db_session,
            topology.route_id,
            [StopInput(id=9999, name="Ghost", lat=1.0, lng=1.0, order_index=0)],
        )
    assert len(await list_route_stops(db_session, topology.route_id)) == 3


@pytest.mark.asyncio
async def test_replace_stops_of_unknown_route(db_session):
    with pytest.raises(ResourceNotFoundError):
        await replace_route_stops(db_session, 999, [])
