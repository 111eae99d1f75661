"""
Trip scheduler service.

Materializes trips from a template, optionally repeated over a date range
or an explicit list of dates, and manages trip lifecycle afterwards.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.config import settings
from triptrack.app.core.exceptions import (
    InvalidTopologyError,
    InvalidStatusTransitionError,
    ResourceNotFoundError,
)
from triptrack.app.models.route import Route
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import TripStatus
from triptrack.app.schemas.route import AnchorInput, StopInput
from triptrack.app.schemas.trip import Recurrence, TripTemplate
from triptrack.app.services.audit import log_event, AuditAction
from triptrack.app.services.events import DomainEventBus, TripCreated, domain_events
from triptrack.app.services.realtime import ChangeOperation, publish_change, trip_topic, row_to_dict
from triptrack.app.services.topology import build_stops, get_route, list_trip_stops, sync_stops, validate_stop_sequence

logger = logging.getLogger("triptrack.scheduler")

TRIP_STATUS_ORDER = [
    TripStatus.SCHEDULED,
    TripStatus.IN_PROGRESS,
    TripStatus.ARRIVED,
    TripStatus.COMPLETED,
]


def expand_dates(start: date, recurrence: Optional[Recurrence], max_days: Optional[int] = None) -> List[date]:
    """
    Dates a template expands to, one trip per calendar day.

    - no recurrence: just `start`
    - days=N: N consecutive days from `start`
    - until_date=D: every day from `start` to D inclusive
    - dates=[...]: the given dates, de-duplicated and sorted

    Raises:
        InvalidTopologyError: inverted range or more than `max_days` dates
    """
    max_days = max_days or settings.max_recurrence_days

    if recurrence is None:
        dates = [start]
    elif recurrence.dates is not None:
        dates = sorted(set(recurrence.dates))
        if not dates:
            raise InvalidTopologyError("Recurrence dates must not be empty")
    else:
        if recurrence.days is not None:
            count = recurrence.days
        else:
            if recurrence.until_date < start:
                raise InvalidTopologyError(
                    "Recurrence end date is before the trip date",
                    details={"trip_date": str(start), "until_date": str(recurrence.until_date)}
                )
            count = (recurrence.until_date - start).days + 1
        if count > max_days:
            raise InvalidTopologyError(
                f"Recurrence expands to {count} trips, the limit is {max_days}",
                details={"count": count, "max_days": max_days}
            )
        dates = [start + timedelta(days=offset) for offset in range(count)]

    if len(dates) > max_days:
        raise InvalidTopologyError(
            f"Recurrence expands to {len(dates)} trips, the limit is {max_days}",
            details={"count": len(dates), "max_days": max_days}
        )
    return dates


def resolve_anchor(override: Optional[AnchorInput], name, lat, lng, which: str):
    """Template anchor wins over the route's; coordinates must end up present."""
    if override is not None and override.lat is not None and override.lng is not None:
        name, lat, lng = override.name or name, override.lat, override.lng
    elif override is not None and override.name:
        name = override.name
    if lat is None or lng is None:
        raise InvalidTopologyError(
            f"Trip {which} anchor has no coordinates",
            details={"anchor": which}
        )
    return name, lat, lng


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    result = await db.execute(select(Trip).where(Trip.id == trip_id))
    trip = result.scalar_one_or_none()
    if not trip:
        raise ResourceNotFoundError("Trip", trip_id)
    return trip


async def create_trips(
    db: AsyncSession,
    template: TripTemplate,
    recurrence: Optional[Recurrence] = None,
    actor: Optional[dict] = None,
    feed=None,
    bus: DomainEventBus = domain_events
) -> List[Trip]:
    """
    Create one trip per expanded date.

    All trips are written in one transaction: any validation failure leaves
    nothing behind. `TripCreated` is emitted for every trip after commit and
    before returning.

    Raises:
        ResourceNotFoundError: unknown route
        InvalidTopologyError: inactive route, missing anchor coordinates,
            invalid stop overrides, invalid recurrence
    """
    route: Optional[Route] = None
    if template.route_id is not None:
        route = await get_route(db, template.route_id)
        if not route.is_active:
            raise InvalidTopologyError("Route is inactive", details={"route_id": route.id})

    start_name, start_lat, start_lng = resolve_anchor(
        template.start,
        route.start_name if route else None,
        route.start_lat if route else None,
        route.start_lng if route else None,
        "start"
    )
    end_name, end_lat, end_lng = resolve_anchor(
        template.end,
        route.end_name if route else None,
        route.end_lat if route else None,
        route.end_lng if route else None,
        "end"
    )

    # An empty override list means "use the route's stops"
    overrides = template.stop_overrides or []
    validate_stop_sequence(overrides)

    dates = expand_dates(template.trip_date, recurrence)

    trips = [
        Trip(
            route_id=template.route_id,
            trip_type=template.trip_type,
            trip_date=trip_date,
            meeting_time=template.meeting_time,
            departure_time=template.departure_time,
            start_name=start_name,
            start_lat=start_lat,
            start_lng=start_lng,
            end_name=end_name,
            end_lat=end_lat,
            end_lng=end_lng,
            has_stop_override=bool(overrides),
            is_active=template.is_active,
            status=TripStatus.SCHEDULED,
        )
        for trip_date in dates
    ]

    try:
        db.add_all(trips)
        await db.flush()
        for trip in trips:
            if overrides:
                db.add_all(build_stops(overrides, trip_id=trip.id))
            await log_event(
                db,
                AuditAction.TRIP_CREATED,
                actor=actor,
                metadata={"trip_id": trip.id, "trip_date": str(trip.trip_date), "route_id": trip.route_id},
                commit=False
            )
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidTopologyError("Trip template conflicts with existing data") from exc

    await db.commit()
    for trip in trips:
        await db.refresh(trip)

    logger.info("Scheduled %d trip(s) from %s to %s", len(trips), dates[0], dates[-1])

    for trip in trips:
        await publish_change(feed, [trip_topic(trip.id)], "trips", ChangeOperation.INSERT, row_to_dict(trip))
        await bus.emit(TripCreated(
            trip_id=trip.id,
            trip_date=trip.trip_date,
            trip_type=trip.trip_type.value,
            route_id=trip.route_id,
        ))

    return trips


async def update_trip_active(
    db: AsyncSession,
    trip_id: int,
    is_active: bool,
    actor: Optional[dict] = None,
    feed=None
) -> Trip:
    """Soft disable / re-enable a trip. Disabled trips cannot be booked."""
    trip = await get_trip(db, trip_id)
    trip.is_active = is_active
    await log_event(
        db,
        AuditAction.TRIP_UPDATED,
        actor=actor,
        metadata={"trip_id": trip_id, "is_active": is_active},
        commit=False
    )
    await db.commit()
    await db.refresh(trip)

    await publish_change(feed, [trip_topic(trip.id)], "trips", ChangeOperation.UPDATE, row_to_dict(trip))
    return trip


async def replace_trip_stops(
    db: AsyncSession,
    trip_id: int,
    stops: Sequence[StopInput],
    actor: Optional[dict] = None,
    feed=None
) -> Trip:
    """
    Replace a trip's stop override list.

    An empty list removes the override and the trip falls back to its
    route's stops. Override stops that stay in the list keep their id.
    """
    validate_stop_sequence(stops)
    trip = await get_trip(db, trip_id)

    try:
        existing = await list_trip_stops(db, trip_id)
        await sync_stops(db, existing, stops, trip_id=trip_id)
        trip.has_stop_override = bool(stops)
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidTopologyError("Stop list conflicts with existing data", details={"trip_id": trip_id}) from exc

    await log_event(
        db,
        AuditAction.TRIP_STOPS_REPLACED,
        actor=actor,
        metadata={"trip_id": trip_id, "stops": len(stops)},
        commit=False
    )
    await db.commit()
    await db.refresh(trip)

    await publish_change(feed, [trip_topic(trip.id)], "stops", ChangeOperation.UPDATE, row_to_dict(trip))
    return trip


async def set_trip_status(
    db: AsyncSession,
    trip_id: int,
    new_status: TripStatus,
    actor: Optional[dict] = None,
    feed=None
) -> Trip:
    """
    Advance a trip through SCHEDULED -> IN_PROGRESS -> ARRIVED -> COMPLETED.

    Raises:
        InvalidStatusTransitionError: the new status is behind the current one
    """
    trip = await get_trip(db, trip_id)
    current = trip.status
    if TRIP_STATUS_ORDER.index(new_status) < TRIP_STATUS_ORDER.index(current):
        raise InvalidStatusTransitionError("Trip", current.value, new_status.value)
    if new_status == current:
        return trip

    trip.status = new_status
    await log_event(
        db,
        AuditAction.TRIP_STATUS_CHANGED,
        actor=actor,
        metadata={"trip_id": trip_id, "from": current.value, "to": new_status.value},
        commit=False
    )
    await db.commit()
    await db.refresh(trip)

    logger.info("Trip %s status %s -> %s", trip_id, current.value, new_status.value)
    await publish_change(feed, [trip_topic(trip.id)], "trips", ChangeOperation.UPDATE, row_to_dict(trip))
    return trip
