"""
Route API Endpoints.

Staff manage reusable routes and their default stops.
"""

from typing import List
from fastapi import APIRouter, Depends, status, Path
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db
from triptrack.app.core.guards import require_role, STAFF_ROLES
from triptrack.app.schemas.route import RouteCreate, RouteResponse, RouteStopsReplace, StopResponse
from triptrack.app.services.realtime import get_change_feed
from triptrack.app.services.topology import create_route, get_route, list_route_stops, replace_route_stops

router = APIRouter(prefix="/staff/routes", tags=["Staff - Routes"])


async def route_response(db: AsyncSession, route) -> RouteResponse:
    response = RouteResponse.model_validate(route)
    response.stops = [StopResponse.model_validate(stop) for stop in await list_route_stops(db, route.id)]
    return response


@router.post("", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route_endpoint(
    payload: RouteCreate,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Create a route (Staff only).

    Anchors may be left empty for a draft; trips cannot be scheduled on a
    route until both anchors have coordinates.
    """
    route = await create_route(db, payload, actor=current_user, feed=feed)
    return await route_response(db, route)


@router.get("/{route_id}", response_model=RouteResponse)
async def get_route_endpoint(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    route = await get_route(db, route_id)
    return await route_response(db, route)


@router.put("/{route_id}/stops", response_model=List[StopResponse])
async def replace_route_stops_endpoint(
    payload: RouteStopsReplace,
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    feed=Depends(get_change_feed)
):
    """
    Replace a route's default stops (Staff only).

    Trips without their own override see the new stops immediately.
    """
    stops = await replace_route_stops(db, route_id, payload.stops, actor=current_user, feed=feed)
    return [StopResponse.model_validate(stop) for stop in stops]
