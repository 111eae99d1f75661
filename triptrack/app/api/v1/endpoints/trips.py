"""
Trip API Endpoints.

Staff schedule trips (one-off or recurring), edit them, and assign drivers.
"""

from fastapi import APIRouter, Depends, status, Path
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db
from triptrack.app.core.guards import require_role, STAFF_ROLES
from triptrack.app.schemas.route import StopResponse
from triptrack.app.schemas.trip import (
    DriverAssignmentRequest,
    DriverAssignmentResponse,
    TripCreateRequest,
    TripCreateResponse,
    TripResponse,
    TripStatusUpdate,
    TripStopsReplace,
    TripUpdate,
)
from triptrack.app.services.driver_assignment import assign_driver, unassign_driver
from triptrack.app.services.realtime import get_change_feed
from triptrack.app.services.topology import load_effective_stops
from triptrack.app.services.trip_scheduler import (
    create_trips,
    get_trip,
    replace_trip_stops,
    set_trip_status,
    update_trip_active,
)

router = APIRouter(prefix="/staff/trips", tags=["Staff - Trips"])


async def trip_response(db: AsyncSession, trip) -> TripResponse:
    response = TripResponse.model_validate(trip)
    response.effective_stops = [StopResponse.model_validate(stop) for stop in await load_effective_stops(db, trip)]
    return response


@router.post("", response_model=TripCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_trips_endpoint(
    payload: TripCreateRequest,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Schedule trips from a template (Staff only).

    Without `recurrence` exactly one trip is created. With it, one trip per
    calendar day of the range (`days` or `until_date`) or per listed date
    (`dates`). Either every trip is created or none is.
    """
    trips = await create_trips(db, payload.template, payload.recurrence, actor=current_user, feed=feed)
    return TripCreateResponse(
        trips=[await trip_response(db, trip) for trip in trips],
        trips_created=len(trips)
    )


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip_endpoint(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    trip = await get_trip(db, trip_id)
    return await trip_response(db, trip)


@router.patch("/{trip_id}", response_model=TripResponse)
async def update_trip_endpoint(
    payload: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """Disable or re-enable a trip (Staff only). Disabled trips cannot be booked."""
    trip = await update_trip_active(db, trip_id, payload.is_active, actor=current_user, feed=feed)
    return await trip_response(db, trip)


@router.put("/{trip_id}/stops", response_model=TripResponse)
async def replace_trip_stops_endpoint(
    payload: TripStopsReplace,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """Override this trip's stops (Staff only). An empty list reverts to the route's stops."""
    trip = await replace_trip_stops(db, trip_id, payload.stops, actor=current_user, feed=feed)
    return await trip_response(db, trip)


@router.patch("/{trip_id}/status", response_model=TripResponse)
async def update_trip_status_endpoint(
    payload: TripStatusUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    trip = await set_trip_status(db, trip_id, payload.status, actor=current_user, feed=feed)
    return await trip_response(db, trip)


@router.post("/{trip_id}/drivers", response_model=DriverAssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_driver_endpoint(
    payload: DriverAssignmentRequest,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """Assign a driver to a trip (Staff only). Assigning twice is a no-op."""
    return await assign_driver(db, trip_id, payload.driver_id, actor=current_user, feed=feed)


@router.delete("/{trip_id}/drivers/{driver_id}", response_model=DriverAssignmentResponse)
async def unassign_driver_endpoint(
    trip_id: int = Path(..., description="Trip ID"),
    driver_id: int = Path(..., description="Driver ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    return await unassign_driver(db, trip_id, driver_id, actor=current_user, feed=feed)
