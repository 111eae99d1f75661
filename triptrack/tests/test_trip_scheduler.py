"""
Trip scheduler tests.

Recurrence expansion, all-or-nothing creation, stop overrides and the
forward-only status lifecycle.
"""

import pytest
from datetime import date, timedelta
from sqlalchemy import func, select

from triptrack.app.core.exceptions import InvalidStatusTransitionError, InvalidTopologyError
from triptrack.app.models.audit_log import AuditLog
from triptrack.app.models.route import Route
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import StopKind, TripStatus, TripType
from triptrack.app.schemas.route import AnchorInput, StopInput
from triptrack.app.schemas.trip import Recurrence, TripTemplate
from triptrack.app.services.events import DomainEventBus, TripCreated
from triptrack.app.services.topology import load_effective_stops
from triptrack.app.services.trip_scheduler import (
    create_trips,
    get_trip,
    expand_dates,
    replace_trip_stops,
    set_trip_status,
    update_trip_active,
)


START = date(2026, 3, 1)


def test_no_recurrence_is_a_single_date():
    assert expand_dates(START, None) == [START]


def test_days_expand_to_consecutive_dates():
    dates = expand_dates(START, Recurrence(days=5))
    assert dates == [START + timedelta(days=offset) for offset in range(5)]
    assert len(set(dates)) == 5


def test_until_date_is_inclusive():
    dates = expand_dates(START, Recurrence(until_date=date(2026, 3, 3)))
    assert dates == [date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 3)]


def test_explicit_dates_are_sorted_and_deduplicated():
    recurrence = Recurrence(dates=[date(2026, 3, 9), date(2026, 3, 2), date(2026, 3, 9)])
    assert expand_dates(START, recurrence) == [date(2026, 3, 2), date(2026, 3, 9)]


def test_inverted_range_is_rejected():
    with pytest.raises(InvalidTopologyError):
        expand_dates(START, Recurrence(until_date=date(2026, 2, 1)))


def test_expansion_is_capped():
    with pytest.raises(InvalidTopologyError):
        expand_dates(START, Recurrence(days=10), max_days=7)


def test_recurrence_needs_exactly_one_mode():
    with pytest.raises(ValueError):
        Recurrence(days=2, until_date=date(2026, 3, 5))
    with pytest.raises(ValueError):
        Recurrence()


async def count_trips(db_session) -> int:
    result = await db_session.execute(select(func.count(Trip.id)))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_recurring_trips_share_overrides(db_session, topology, staff_user):
    template = TripTemplate(
        route_id=topology.route_id,
        trip_type=TripType.DEPARTURE,
        trip_date=topology.trip_date,
        stop_overrides=[
            StopInput(name="P1", lat=0.5, lng=0.5, order_index=0, kind=StopKind.PICKUP),
            StopInput(name="P2", lat=0.7, lng=0.7, order_index=1, kind=StopKind.BOTH),
        ],
    )
    trips = await create_trips(db_session, template, Recurrence(days=3), actor=staff_user)

    assert len(trips) == 3
    assert len({trip.trip_date for trip in trips}) == 3
    for trip in trips:
        assert trip.has_stop_override is True
        assert trip.start_lat == 0.0 and trip.end_lat == 3.0
        stops = await load_effective_stops(db_session, trip)
        assert [(stop.name, stop.order_index) for stop in stops] == [("P1", 0), ("P2", 1)]

    result = await db_session.execute(select(func.count(AuditLog.id)).where(AuditLog.action == "TRIP_CREATED"))
    assert result.scalar_one() == 3


@pytest.mark.asyncio
async def test_missing_anchor_creates_nothing(db_session):
    route = Route(name="Draft", start_name="Depot", start_lat=0.0, start_lng=0.0)
    db_session.add(route)
    await db_session.commit()

    template = TripTemplate(route_id=route.id, trip_type=TripType.ARRIVAL, trip_date=date(2026, 3, 1))
    with pytest.raises(InvalidTopologyError):
        await create_trips(db_session, template, Recurrence(days=4))

    assert await count_trips(db_session) == 0


@pytest.mark.asyncio
async def test_template_anchor_completes_a_draft_route(db_session):
    route = Route(name="Draft", start_name="Depot", start_lat=0.0, start_lng=0.0)
    db_session.add(route)
    await db_session.commit()

    template = TripTemplate(
        route_id=route.id,
        trip_type=TripType.ARRIVAL,
        trip_date=date(2026, 3, 1),
        end=AnchorInput(name="Gate", lat=2.0, lng=2.0),
    )
    [trip] = await create_trips(db_session, template)
    assert (trip.end_name, trip.end_lat, trip.end_lng) == ("Gate", 2.0, 2.0)
    assert trip.start_name == "Depot"


@pytest.mark.asyncio
async def test_invalid_override_creates_nothing(db_session, topology):
    template = TripTemplate(
        route_id=topology.route_id,
        trip_type=TripType.ARRIVAL,
        trip_date=topology.trip_date,
        stop_overrides=[
            StopInput(name="X", lat=1, lng=1, order_index=3),
            StopInput(name="Y", lat=1, lng=1, order_index=1),
        ],
    )
    before = await count_trips(db_session)
    with pytest.raises(InvalidTopologyError):
        await create_trips(db_session, template, Recurrence(days=2))
    assert await count_trips(db_session) == before


@pytest.mark.asyncio
async def test_empty_override_means_route_defaults(db_session, topology):
    template = TripTemplate(
        route_id=topology.route_id,
        trip_type=TripType.ARRIVAL,
        trip_date=topology.trip_date,
        stop_overrides=[],
    )
    [trip] = await create_trips(db_session, template)
    assert trip.has_stop_override is False

    result = await db_session.execute(select(func.count(Stop.id)).where(Stop.trip_id == trip.id))
    assert result.scalar_one() == 0
    stops = await load_effective_stops(db_session, trip)
    assert [stop.name for stop in stops] == ["B", "C"]


@pytest.mark.asyncio
async def test_trip_created_emitted_before_return(db_session, topology):
    bus = DomainEventBus()
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(TripCreated, handler)
    template = TripTemplate(route_id=topology.route_id, trip_type=TripType.ARRIVAL, trip_date=topology.trip_date)
    trips = await create_trips(db_session, template, Recurrence(days=2), bus=bus)

    assert [event.trip_id for event in received] == [trip.id for trip in trips]
    assert received[0].trip_type == "ARRIVAL"


@pytest.mark.asyncio
async def test_failing_handler_does_not_undo_creation(db_session, topology):
    bus = DomainEventBus()

    async def broken(event):
        raise RuntimeError("handler exploded")

    bus.subscribe(TripCreated, broken)
    template = TripTemplate(route_id=topology.route_id, trip_type=TripType.ARRIVAL, trip_date=topology.trip_date)
    before = await count_trips(db_session)
    await create_trips(db_session, template, bus=bus)
    assert await count_trips(db_session) == before + 1


@pytest.mark.asyncio
async def test_clearing_trip_override_reverts_to_route(db_session, topology):
    trip = await replace_trip_stops(
        db_session,
        topology.departure_trip_id,
        [StopInput(name="Z", lat=1, lng=1, order_index=0, kind=StopKind.PICKUP)],
    )
    assert trip.has_stop_override is True
    assert [stop.name for stop in await load_effective_stops(db_session, trip)] == ["Z"]

    trip = await replace_trip_stops(db_session, topology.departure_trip_id, [])
    assert trip.has_stop_override is False
    assert [stop.name for stop in await load_effective_stops(db_session, trip)] == ["A", "B"]


@pytest.mark.asyncio
async def test_editing_trip_override_keeps_stop_ids(db_session, topology):
    await replace_trip_stops(
        db_session,
        topology.departure_trip_id,
        [
            StopInput(name="Z", lat=1, lng=1, order_index=0, kind=StopKind.PICKUP),
            StopInput(name="Y", lat=2, lng=2, order_index=1, kind=StopKind.PICKUP),
        ],
    )
    trip = await get_trip(db_session, topology.departure_trip_id)
    z, y = await load_effective_stops(db_session, trip)

    await replace_trip_stops(
        db_session,
        topology.departure_trip_id,
        [
            StopInput(id=y.id, name="Y", lat=2, lng=2, order_index=0, kind=StopKind.PICKUP),
            StopInput(id=z.id, name="Z2", lat=1, lng=1, order_index=1, kind=StopKind.BOTH),
        ],
    )
    stops = await load_effective_stops(db_session, trip)
    assert [(stop.id, stop.name) for stop in stops] == [(y.id, "Y"), (z.id, "Z2")]


@pytest.mark.asyncio
async def test_status_only_moves_forward(db_session, topology, change_feed):
    subscription = await change_feed.subscribe([f"trip:{topology.arrival_trip_id}"])

    trip = await set_trip_status(db_session, topology.arrival_trip_id, TripStatus.IN_PROGRESS, feed=change_feed)
    assert trip.status == TripStatus.IN_PROGRESS
    event = await subscription.__anext__()
    assert event.row["status"] == "IN_PROGRESS"

    with pytest.raises(InvalidStatusTransitionError):
        await set_trip_status(db_session, topology.arrival_trip_id, TripStatus.SCHEDULED)

    # Same status is a no-op
    trip = await set_trip_status(db_session, topology.arrival_trip_id, TripStatus.IN_PROGRESS)
    assert trip.status == TripStatus.IN_PROGRESS
    await subscription.close()


@pytest.mark.asyncio
async def test_soft_disable(db_session, topology):
    trip = await update_trip_active(db_session, topology.arrival_trip_id, False)
    assert trip.is_active is False
