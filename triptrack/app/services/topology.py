"""
Topology store service.

Routes, their default stops, and the effective stop list a trip renders.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.exceptions import InvalidTopologyError, ResourceNotFoundError
from triptrack.app.models.route import Route
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import StopKind, TripType
from triptrack.app.schemas.route import RouteCreate, StopInput
from triptrack.app.services.audit import log_event, AuditAction
from triptrack.app.services.realtime import ChangeOperation, publish_change, route_topic, row_to_dict

logger = logging.getLogger("triptrack.topology")

# Stop kinds a passenger can use on each trip direction
ELIGIBLE_KINDS = {
    TripType.ARRIVAL: {StopKind.DROPOFF, StopKind.BOTH},
    TripType.DEPARTURE: {StopKind.PICKUP, StopKind.BOTH},
}

PICKUP_KINDS = {StopKind.PICKUP, StopKind.BOTH}
DROPOFF_KINDS = {StopKind.DROPOFF, StopKind.BOTH}


def validate_stop_sequence(stops: Sequence[StopInput]) -> None:
    """
    Check an ordered stop list.

    Raises:
        InvalidTopologyError: order_index not strictly increasing, or a
            coordinate out of range
    """
    previous = None
    for position, stop in enumerate(stops):
        if not (-90 <= stop.lat <= 90 and -180 <= stop.lng <= 180):
            raise InvalidTopologyError(
                f"Stop '{stop.name}' has coordinates out of range",
                details={"position": position, "lat": stop.lat, "lng": stop.lng}
            )
        if previous is not None and stop.order_index <= previous:
            raise InvalidTopologyError(
                "Stop order_index must be strictly increasing and unique",
                details={"position": position, "order_index": stop.order_index, "previous": previous}
            )
        previous = stop.order_index


def effective_stops(
    route_stops: Sequence[Stop],
    override_stops: Sequence[Stop],
    has_override: bool,
    trip_type: TripType
) -> List[Stop]:
    """
    Stops a trip actually serves.

    The trip's override list wins when present, otherwise the route's
    defaults. The result is ordered by `order_index` and keeps only the
    kinds usable on this trip direction.
    """
    source = override_stops if has_override else route_stops
    eligible = ELIGIBLE_KINDS[TripType(trip_type)]
    return [
        stop for stop in sorted(source, key=lambda s: s.order_index)
        if stop.kind in eligible
    ]


async def list_route_stops(db: AsyncSession, route_id: int) -> List[Stop]:
    result = await db.execute(
        select(Stop).where(Stop.route_id == route_id).order_by(Stop.order_index)
    )
    return list(result.scalars().all())


async def list_trip_stops(db: AsyncSession, trip_id: int) -> List[Stop]:
    result = await db.execute(
        select(Stop).where(Stop.trip_id == trip_id).order_by(Stop.order_index)
    )
    return list(result.scalars().all())


async def load_effective_stops(db: AsyncSession, trip: Trip) -> List[Stop]:
    """Database-backed `effective_stops` for one trip."""
    route_stops: List[Stop] = []
    override_stops: List[Stop] = []
    if trip.has_stop_override:
        override_stops = await list_trip_stops(db, trip.id)
    elif trip.route_id:
        route_stops = await list_route_stops(db, trip.route_id)
    return effective_stops(route_stops, override_stops, trip.has_stop_override, trip.trip_type)


def build_stops(stops: Sequence[StopInput], route_id: Optional[int] = None, trip_id: Optional[int] = None) -> List[Stop]:
    return [
        Stop(
            route_id=route_id,
            trip_id=trip_id,
            name=stop.name,
            lat=stop.lat,
            lng=stop.lng,
            order_index=stop.order_index,
            kind=stop.kind,
        )
        for stop in stops
    ]


async def sync_stops(
    db: AsyncSession,
    existing: Sequence[Stop],
    stops: Sequence[StopInput],
    route_id: Optional[int] = None,
    trip_id: Optional[int] = None
) -> List[Stop]:
    """
    Bring an owner's stop rows in line with an edited stop list.

    Entries are matched to existing rows by `id`, or, without an id, by
    unchanged coordinates. Matched rows are updated in place so bookings
    keep their selection; unmatched rows are deleted and the remaining
    entries inserted.

    Raises:
        InvalidTopologyError: an id that is not one of this owner's stops,
            or the same id given twice
    """
    by_id = {row.id: row for row in existing}
    matched: List[Optional[Stop]] = [None] * len(stops)
    used = set()

    for position, stop in enumerate(stops):
        if stop.id is None:
            continue
        row = by_id.get(stop.id)
        if row is None or row.id in used:
            raise InvalidTopologyError(
                "Stop id is not part of this stop list",
                details={"position": position, "stop_id": stop.id}
            )
        matched[position] = row
        used.add(row.id)

    for position, stop in enumerate(stops):
        if stop.id is not None:
            continue
        for row in existing:
            if row.id not in used and (row.lat, row.lng) == (stop.lat, stop.lng):
                matched[position] = row
                used.add(row.id)
                break

    for row in existing:
        if row.id not in used:
            await db.delete(row)

    # Park kept rows on negative slots so reordering never trips the
    # (owner, order_index) unique constraint mid-flush
    kept = [row for row in matched if row is not None]
    for offset, row in enumerate(kept):
        row.order_index = -(offset + 1)
    await db.flush()

    result = []
    for stop, row in zip(stops, matched):
        if row is None:
            row = Stop(route_id=route_id, trip_id=trip_id)
            db.add(row)
        row.name = stop.name
        row.lat = stop.lat
        row.lng = stop.lng
        row.order_index = stop.order_index
        row.kind = stop.kind
        result.append(row)
    await db.flush()
    return result


async def get_route(db: AsyncSession, route_id: int) -> Route:
    result = await db.execute(select(Route).where(Route.id == route_id))
    route = result.scalar_one_or_none()
    if not route:
        raise ResourceNotFoundError("Route", route_id)
    return route


async def create_route(
    db: AsyncSession,
    payload: RouteCreate,
    actor: Optional[dict] = None,
    feed=None
) -> Route:
    """
    Create a route with its default stops.

    Raises:
        InvalidTopologyError: invalid stop sequence
    """
    validate_stop_sequence(payload.stops)

    route = Route(
        name=payload.name,
        start_name=payload.start.name,
        start_lat=payload.start.lat,
        start_lng=payload.start.lng,
        end_name=payload.end.name,
        end_lat=payload.end.lat,
        end_lng=payload.end.lng,
        is_active=True,
    )
    db.add(route)
    await db.flush()

    db.add_all(build_stops(payload.stops, route_id=route.id))
    await log_event(
        db,
        AuditAction.ROUTE_CREATED,
        actor=actor,
        metadata={"route_id": route.id, "stops": len(payload.stops)},
        commit=False
    )
    await db.commit()
    await db.refresh(route)

    logger.info("Route %s created with %d stops", route.id, len(payload.stops))
    await publish_change(feed, [route_topic(route.id)], "routes", ChangeOperation.INSERT, row_to_dict(route))
    return route


async def replace_route_stops(
    db: AsyncSession,
    route_id: int,
    stops: Sequence[StopInput],
    actor: Optional[dict] = None,
    feed=None
) -> List[Stop]:
    """
    Replace a route's default stop list.

    Trips without an override pick up the new list immediately. Stops
    that stay in the list keep their id; bookings pointing at a removed
    stop fall back to the trip default.
    """
    validate_stop_sequence(stops)
    await get_route(db, route_id)

    try:
        existing = await list_route_stops(db, route_id)
        new_stops = await sync_stops(db, existing, stops, route_id=route_id)
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidTopologyError("Stop list conflicts with existing data", details={"route_id": route_id}) from exc

    await log_event(
        db,
        AuditAction.ROUTE_STOPS_REPLACED,
        actor=actor,
        metadata={"route_id": route_id, "stops": len(new_stops)},
        commit=False
    )
    await db.commit()

    await publish_change(
        feed,
        [route_topic(route_id)],
        "stops",
        ChangeOperation.UPDATE,
        {"route_id": route_id, "stop_ids": [stop.id for stop in new_stops]}
    )
    return new_stops
