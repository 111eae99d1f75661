"""
Driver Location API Endpoints.

Drivers push their live status and, for older clients, per-request pings.
"""

from fastapi import APIRouter, Depends, status, Path
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db
from triptrack.app.core.guards import require_role, get_driver_for_user, ensure_can_view_booking
from triptrack.app.models.enums import UserRole
from triptrack.app.schemas.driver_location import (
    LiveStatusResponse,
    LiveStatusUpdate,
    LocationPingRecord,
    LocationPingResponse,
)
from triptrack.app.services.booking_ledger import get_booking
from triptrack.app.services.location_ingestion import record_live_status, record_request_ping
from triptrack.app.services.realtime import get_change_feed

router = APIRouter(prefix="/driver", tags=["Driver - Location"])


@router.put("/live-status", response_model=LiveStatusResponse)
async def update_live_status(
    payload: LiveStatusUpdate,
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Update the driver's live status (Driver only).

    Sent periodically while the driver is available; `is_available=false`
    when they stop sharing.
    """
    driver = await get_driver_for_user(db, current_user)
    return await record_live_status(
        db,
        driver.id,
        payload.is_available,
        lat=payload.lat,
        lng=payload.lng,
        feed=feed
    )


@router.post(
    "/requests/{request_id}/pings",
    response_model=LocationPingResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_ping(
    payload: LocationPingRecord,
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """Append a location ping for a request on one of the driver's trips."""
    driver = await get_driver_for_user(db, current_user)
    booking = await get_booking(db, request_id)
    await ensure_can_view_booking(db, booking, current_user)
    return await record_request_ping(
        db,
        request_id,
        payload.lat,
        payload.lng,
        accuracy_meters=payload.accuracy_meters,
        driver_id=driver.id,
        feed=feed
    )
