"""
Booking API Endpoints.

Passengers and staff book requests onto trips; staff confirm them and
staff or the trip's driver move them forward.
"""

from fastapi import APIRouter, Depends, status, Path
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db
from triptrack.app.core.guards import require_role, ensure_can_view_booking, STAFF_ROLES
from triptrack.app.models.enums import UserRole
from triptrack.app.schemas.booking import BookingRequest, BookingResponse, BookingStatusUpdate
from triptrack.app.services.booking_ledger import book_request, confirm_booking, get_booking, set_booking_status
from triptrack.app.services.realtime import get_change_feed

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.put("/requests/{request_id}", response_model=BookingResponse)
async def book_request_endpoint(
    payload: BookingRequest,
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES + [UserRole.PASSENGER])),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Book a request onto a trip, or change an existing booking.

    Calling again with the same request updates the booking in place.
    Passenger bookings await staff approval and lock once confirmed.
    """
    return await book_request(
        db,
        request_id,
        payload.trip_id,
        pickup_stop_id=payload.pickup_stop_id,
        dropoff_stop_id=payload.dropoff_stop_id,
        actor=current_user,
        passenger_user_id=payload.passenger_user_id,
        feed=feed
    )


@router.get("/requests/{request_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN, UserRole.STAFF, UserRole.DRIVER, UserRole.PASSENGER])),
    db: AsyncSession = Depends(get_db)
):
    booking = await get_booking(db, request_id)
    await ensure_can_view_booking(db, booking, current_user)
    return booking


@router.post("/requests/{request_id}/confirm", response_model=BookingResponse)
async def confirm_booking_endpoint(
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """Approve a passenger booking (Staff only)."""
    return await confirm_booking(db, request_id, actor=current_user, feed=feed)


@router.patch("/requests/{request_id}/status", response_model=BookingResponse, status_code=status.HTTP_200_OK)
async def update_booking_status_endpoint(
    payload: BookingStatusUpdate,
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES + [UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Move a booking forward, e.g. mark the passenger arrived.

    Drivers may only update bookings on trips they are assigned to.
    """
    booking = await get_booking(db, request_id)
    await ensure_can_view_booking(db, booking, current_user)
    return await set_booking_status(db, request_id, payload.status, actor=current_user, feed=feed)
