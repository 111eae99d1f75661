"""
Booking ledger service.

Links a visit request to the trip it travels on and the stops chosen for
it. One booking per request: booking again updates the same row.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.clock import utcnow
from triptrack.app.core.exceptions import (
    BookingLockedError,
    InsufficientPermissionsError,
    InvalidStatusTransitionError,
    ResourceNotFoundError,
    StopNotEligibleError,
    TripNotBookableError,
)
from triptrack.app.core.guards import is_staff
from triptrack.app.models.booking import Booking
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import BookingStatus, TERMINAL_BOOKING_STATUSES, TERMINAL_TRIP_STATUSES
from triptrack.app.services.audit import log_event, AuditAction
from triptrack.app.services.realtime import ChangeOperation, publish_change, request_topic, trip_topic, row_to_dict
from triptrack.app.services.topology import DROPOFF_KINDS, PICKUP_KINDS, load_effective_stops
from triptrack.app.services.trip_scheduler import get_trip

logger = logging.getLogger("triptrack.bookings")

BOOKING_STATUS_ORDER = [
    BookingStatus.PENDING_APPROVAL,
    BookingStatus.CONFIRMED,
    BookingStatus.ARRIVED,
    BookingStatus.COMPLETED,
]


async def get_booking(db: AsyncSession, request_id: int) -> Booking:
    result = await db.execute(select(Booking).where(Booking.request_id == request_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise ResourceNotFoundError("Booking for request", request_id)
    return booking


async def list_trip_bookings(db: AsyncSession, trip_id: int) -> List[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.trip_id == trip_id).order_by(Booking.id)
    )
    return list(result.scalars().all())


def ensure_trip_bookable(trip: Trip, today: date) -> None:
    if not trip.is_active:
        raise TripNotBookableError(trip.id, "trip is inactive")
    if trip.status in TERMINAL_TRIP_STATUSES:
        raise TripNotBookableError(trip.id, "trip has already finished")
    if trip.trip_date < today:
        raise TripNotBookableError(trip.id, "trip date has passed")


def check_stop(stop_id: Optional[int], role: str, allowed_kinds, effective: List[Stop], trip_id: int) -> None:
    """The stop must be one the trip serves and usable for this role."""
    if stop_id is None:
        return
    stop = next((s for s in effective if s.id == stop_id), None)
    if stop is None or stop.kind not in allowed_kinds:
        raise StopNotEligibleError(stop_id, role, trip_id)


async def book_request(
    db: AsyncSession,
    request_id: int,
    trip_id: int,
    pickup_stop_id: Optional[int] = None,
    dropoff_stop_id: Optional[int] = None,
    actor: Optional[dict] = None,
    passenger_user_id: Optional[int] = None,
    feed=None,
    today: Optional[date] = None
) -> Booking:
    """
    Book (or re-book) a request onto a trip.

    Passenger bookings wait for staff approval; staff bookings are
    confirmed immediately. Once confirmed, a passenger can no longer change
    the booking.

    A staff booking over a pending passenger booking confirms it for
    `passenger_user_id`, not for the passenger who opened it; only
    `confirm_booking` approves that passenger as the owner.

    Raises:
        ResourceNotFoundError: unknown trip
        TripNotBookableError: trip inactive, finished or in the past
        StopNotEligibleError: a chosen stop is not served for its role
        BookingLockedError: passenger edit of a confirmed booking
        InsufficientPermissionsError: passenger editing another passenger's booking
    """
    today = today or utcnow().date()
    staff = actor is None or is_staff(actor)

    trip = await get_trip(db, trip_id)
    ensure_trip_bookable(trip, today)

    effective = await load_effective_stops(db, trip)
    check_stop(pickup_stop_id, "pickup", PICKUP_KINDS, effective, trip_id)
    check_stop(dropoff_stop_id, "dropoff", DROPOFF_KINDS, effective, trip_id)

    result = await db.execute(select(Booking).where(Booking.request_id == request_id))
    booking = result.scalar_one_or_none()

    if booking:
        if not staff:
            if booking.passenger_user_id != actor.get("user_id"):
                raise InsufficientPermissionsError(
                    "Access denied. You do not have permission to access this booking.",
                    details={"request_id": request_id}
                )
            if booking.status != BookingStatus.PENDING_APPROVAL:
                raise BookingLockedError(request_id)
        elif booking.status in TERMINAL_BOOKING_STATUSES:
            raise BookingLockedError(request_id)

    previous_trip_id = booking.trip_id if booking else None

    if booking is None:
        booking = Booking(
            request_id=request_id,
            passenger_user_id=passenger_user_id if staff else actor.get("user_id"),
            status=BookingStatus.CONFIRMED if staff else BookingStatus.PENDING_APPROVAL,
        )
        db.add(booking)
        action = AuditAction.BOOKING_CREATED
    elif previous_trip_id != trip_id:
        action = AuditAction.BOOKING_REASSIGNED
    else:
        action = AuditAction.BOOKING_UPDATED

    booking.trip_id = trip_id
    booking.selected_pickup_stop_id = pickup_stop_id
    booking.selected_dropoff_stop_id = dropoff_stop_id
    if staff:
        if booking.status == BookingStatus.PENDING_APPROVAL:
            # The passenger's claim is kept only through confirm_booking
            booking.passenger_user_id = passenger_user_id
            booking.status = BookingStatus.CONFIRMED
        elif passenger_user_id is not None:
            booking.passenger_user_id = passenger_user_id

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        if previous_trip_id is not None:
            raise
        # Concurrent first booking of the same request: retry as an update
        return await book_request(
            db, request_id, trip_id, pickup_stop_id, dropoff_stop_id,
            actor=actor, passenger_user_id=passenger_user_id, feed=feed, today=today
        )

    await log_event(
        db,
        action,
        actor=actor,
        metadata={
            "request_id": request_id,
            "trip_id": trip_id,
            "previous_trip_id": previous_trip_id,
            "pickup_stop_id": pickup_stop_id,
            "dropoff_stop_id": dropoff_stop_id,
        },
        commit=False
    )
    await db.commit()
    await db.refresh(booking)

    if action == AuditAction.BOOKING_REASSIGNED:
        logger.info("Request %s moved from trip %s to trip %s", request_id, previous_trip_id, trip_id)

    topics = [request_topic(request_id), trip_topic(trip_id)]
    if previous_trip_id is not None:
        topics.append(trip_topic(previous_trip_id))
    operation = ChangeOperation.INSERT if action == AuditAction.BOOKING_CREATED else ChangeOperation.UPDATE
    await publish_change(feed, topics, "bookings", operation, row_to_dict(booking))
    return booking


async def confirm_booking(
    db: AsyncSession,
    request_id: int,
    actor: Optional[dict] = None,
    feed=None
) -> Booking:
    """Staff approval of a passenger booking."""
    booking = await get_booking(db, request_id)
    if booking.status == BookingStatus.CONFIRMED:
        return booking
    if booking.status != BookingStatus.PENDING_APPROVAL:
        raise InvalidStatusTransitionError("Booking", booking.status.value, BookingStatus.CONFIRMED.value)

    booking.status = BookingStatus.CONFIRMED
    await log_event(
        db,
        AuditAction.BOOKING_CONFIRMED,
        actor=actor,
        metadata={"request_id": request_id, "trip_id": booking.trip_id},
        commit=False
    )
    await db.commit()
    await db.refresh(booking)

    await publish_change(
        feed,
        [request_topic(request_id), trip_topic(booking.trip_id)],
        "bookings",
        ChangeOperation.UPDATE,
        row_to_dict(booking)
    )
    return booking


async def set_booking_status(
    db: AsyncSession,
    request_id: int,
    new_status: BookingStatus,
    actor: Optional[dict] = None,
    feed=None
) -> Booking:
    """
    Move a booking forward (e.g. the passenger arrived, the visit completed).

    Raises:
        InvalidStatusTransitionError: the new status is behind the current one
    """
    booking = await get_booking(db, request_id)
    current = booking.status
    if BOOKING_STATUS_ORDER.index(new_status) < BOOKING_STATUS_ORDER.index(current):
        raise InvalidStatusTransitionError("Booking", current.value, new_status.value)
    if new_status == current:
        return booking

    booking.status = new_status
    await log_event(
        db,
        AuditAction.BOOKING_STATUS_CHANGED,
        actor=actor,
        metadata={"request_id": request_id, "from": current.value, "to": new_status.value},
        commit=False
    )
    await db.commit()
    await db.refresh(booking)

    await publish_change(
        feed,
        [request_topic(request_id), trip_topic(booking.trip_id)],
        "bookings",
        ChangeOperation.UPDATE,
        row_to_dict(booking)
    )
    return booking
