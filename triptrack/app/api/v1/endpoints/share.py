"""
Share Link API Endpoints.

Passengers (or staff) issue time-boxed links; anyone holding a link can
watch that one request's tracking view until it expires.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, WebSocket, WebSocketException, status
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.db.session import get_db, get_session_factory
from triptrack.app.core.clock import as_naive_utc, utcnow
from triptrack.app.core.exceptions import AppException
from triptrack.app.core.guards import require_role, ensure_can_view_booking, STAFF_ROLES
from triptrack.app.models.enums import UserRole
from triptrack.app.schemas.share import ShareLinkCreate, ShareLinkResponse
from triptrack.app.schemas.tracking import TrackingView
from triptrack.app.services.booking_ledger import get_booking
from triptrack.app.services.eta_engine import EtaEngine, get_eta_engine
from triptrack.app.services.realtime import get_change_feed
from triptrack.app.services.share_links import issue_share_link, resolve_share_token, share_url
from triptrack.app.services.tracking import compute_snapshot
from triptrack.app.api.v1.endpoints.tracking import stream_tracking

router = APIRouter(prefix="/tracking", tags=["Share Links"])

# Mounted at the application root: links are handed to people without accounts
public_router = APIRouter(prefix="/share", tags=["Share Links"])


@router.post(
    "/requests/{request_id}/share-links",
    response_model=ShareLinkResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_share_link(
    payload: Optional[ShareLinkCreate] = None,
    request_id: int = Path(..., description="Visit request ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES + [UserRole.PASSENGER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Issue a share link for a request (its passenger or staff).

    The token is returned once; only its hash is stored.
    """
    booking = await get_booking(db, request_id)
    await ensure_can_view_booking(db, booking, current_user)

    token, share_token = await issue_share_link(
        db,
        request_id,
        horizon_hours=payload.horizon_hours if payload else None,
        actor=current_user
    )
    return ShareLinkResponse(
        token=token,
        url=share_url(token),
        request_id=request_id,
        expires_at=share_token.expires_at
    )


@public_router.get("/{token}", response_model=TrackingView)
async def view_shared_tracking(
    token: str = Path(..., description="Share token"),
    db: AsyncSession = Depends(get_db),
    engine: EtaEngine = Depends(get_eta_engine)
):
    """
    Read-only tracking view behind a share link (no authentication).

    410 once the link has expired, 404 for an unknown link.
    """
    share_token = await resolve_share_token(db, token)
    return await compute_snapshot(db, share_token.request_id, engine)


@public_router.websocket("/{token}/ws")
async def stream_shared_tracking(
    websocket: WebSocket,
    token: str,
    session_factory=Depends(get_session_factory),
    feed=Depends(get_change_feed),
    engine: EtaEngine = Depends(get_eta_engine)
):
    """Live view behind a share link; the stream ends when the link expires."""
    async with session_factory() as db:
        try:
            share_token = await resolve_share_token(db, token)
        except AppException as exc:
            raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message) from exc

    remaining = (as_naive_utc(share_token.expires_at) - utcnow()).total_seconds()
    await stream_tracking(
        websocket,
        share_token.request_id,
        session_factory,
        feed,
        engine,
        deadline_seconds=max(remaining, 0)
    )
