"""
Live Tracking API Endpoints.

Snapshot and streaming tracking views for passengers, staff and drivers,
plus the driver's passenger manifest.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, WebSocket, WebSocketDisconnect, WebSocketException, status
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db, get_session_factory
from triptrack.app.core.dependencies import get_websocket_user
from triptrack.app.core.exceptions import AppException, InsufficientPermissionsError
from triptrack.app.core.guards import require_role, enforce_role, ensure_can_view_booking, get_driver_for_user, is_staff
from triptrack.app.models.enums import UserRole
from triptrack.app.schemas.tracking import PassengerManifest, TrackingView
from triptrack.app.services.booking_ledger import get_booking
from triptrack.app.services.driver_assignment import active_driver_ids
from triptrack.app.services.eta_engine import EtaEngine, get_eta_engine
from triptrack.app.services.realtime import get_change_feed
from triptrack.app.services.tracking import build_manifest, compute_snapshot
from triptrack.app.services.tracking_session import TrackingSession

logger = logging.getLogger("triptrack.tracking")

ALL_ROLES = [UserRole.ADMIN, UserRole.STAFF, UserRole.DRIVER, UserRole.PASSENGER]

router = APIRouter(prefix="/tracking", tags=["Live Tracking"])
driver_router = APIRouter(prefix="/driver", tags=["Driver - Manifest"])


async def _drain(websocket: WebSocket) -> None:
    """Read (and ignore) client frames until the client goes away."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def stream_tracking(
    websocket: WebSocket,
    request_id: int,
    session_factory,
    feed,
    engine: EtaEngine,
    deadline_seconds: Optional[float] = None
) -> None:
    """
    Stream tracking views over an accepted-to-be WebSocket.

    Ends when the client disconnects, the booking reaches a terminal
    status, or `deadline_seconds` elapse.
    """
    await websocket.accept()

    async def push(view: TrackingView) -> None:
        await websocket.send_json(view.model_dump(mode="json"))

    client_gone = False
    async with TrackingSession(request_id, session_factory, feed, engine=engine, on_update=push) as session:
        receiver = asyncio.create_task(_drain(websocket))
        closed = asyncio.create_task(session.wait_closed())
        done, pending = await asyncio.wait(
            {receiver, closed},
            timeout=deadline_seconds,
            return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        client_gone = receiver in done

    if not client_gone:
        await websocket.close()


@router.get("/requests/{request_id}", response_model=TrackingView)
async def get_tracking_snapshot(
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role(ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
    engine: EtaEngine = Depends(get_eta_engine)
):
    """
    Current tracking view of a request.

    Passengers see their own requests, drivers the requests on their
    trips, staff everything. The ETA is reused for one throttle interval.
    """
    booking = await get_booking(db, request_id)
    await ensure_can_view_booking(db, booking, current_user)
    return await compute_snapshot(db, request_id, engine)


@router.websocket("/requests/{request_id}/ws")
async def stream_tracking_view(
    websocket: WebSocket,
    request_id: int,
    current_user: dict = Depends(get_websocket_user),
    session_factory=Depends(get_session_factory),
    feed=Depends(get_change_feed),
    engine: EtaEngine = Depends(get_eta_engine)
):
    """Live tracking view of a request; authenticate with `?token=`."""
    async with session_factory() as db:
        try:
            enforce_role(current_user, ALL_ROLES)
            booking = await get_booking(db, request_id)
            await ensure_can_view_booking(db, booking, current_user)
        except AppException as exc:
            raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message) from exc

    await stream_tracking(websocket, request_id, session_factory, feed, engine)


@driver_router.get("/trips/{trip_id}/passengers", response_model=PassengerManifest)
async def get_passenger_manifest(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN, UserRole.STAFF, UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db),
    engine: EtaEngine = Depends(get_eta_engine)
):
    """
    Passengers booked on a trip with an ETA to each one's stop.

    Drivers only see trips they are actively assigned to.
    """
    if not is_staff(current_user):
        driver = await get_driver_for_user(db, current_user)
        if driver.id not in await active_driver_ids(db, trip_id):
            raise InsufficientPermissionsError(
                "Access denied. You are not assigned to this trip.",
                details={"trip_id": trip_id}
            )
    return await build_manifest(db, trip_id, engine)
