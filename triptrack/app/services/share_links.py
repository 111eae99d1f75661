"""
Share link service.

Issues time-boxed tokens granting read-only access to one request's
tracking view. Only the SHA-256 digest is persisted.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.clock import as_naive_utc, utcnow
from triptrack.app.core.config import settings
from triptrack.app.core.exceptions import ShareTokenExpiredError, ShareTokenNotFoundError
from triptrack.app.models.share_token import ShareToken
from triptrack.app.services.audit import log_event, AuditAction


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def share_url(token: str) -> str:
    return f"{settings.share_base_url.rstrip('/')}/share/{token}"


async def issue_share_link(
    db: AsyncSession,
    request_id: int,
    horizon_hours: Optional[int] = None,
    actor: Optional[dict] = None,
    now: Optional[datetime] = None
) -> Tuple[str, ShareToken]:
    """
    Issue a new share token for a request.

    Returns:
        (raw token, stored row). The raw token cannot be recovered later.
    """
    now = now or utcnow()
    horizon = horizon_hours or settings.share_token_horizon_hours
    token = secrets.token_urlsafe(32)

    share_token = ShareToken(
        request_id=request_id,
        token_hash=hash_token(token),
        issued_at=now,
        expires_at=now + timedelta(hours=horizon),
    )
    db.add(share_token)
    await db.flush()
    await log_event(
        db,
        AuditAction.SHARE_LINK_ISSUED,
        actor=actor,
        metadata={"request_id": request_id, "share_token_id": share_token.id, "horizon_hours": horizon},
        commit=False
    )
    await db.commit()
    await db.refresh(share_token)
    return token, share_token


async def resolve_share_token(db: AsyncSession, token: str, now: Optional[datetime] = None) -> ShareToken:
    """
    Look up a share token.

    Raises:
        ShareTokenNotFoundError: unknown token
        ShareTokenExpiredError: past its absolute expiry
    """
    result = await db.execute(
        select(ShareToken).where(ShareToken.token_hash == hash_token(token))
    )
    share_token = result.scalar_one_or_none()
    if not share_token:
        raise ShareTokenNotFoundError()

    if as_naive_utc(now or utcnow()) >= as_naive_utc(share_token.expires_at):
        raise ShareTokenExpiredError()
    return share_token


async def resolve(db: AsyncSession, token: str, now: Optional[datetime] = None) -> int:
    """Request id a valid token grants access to."""
    share_token = await resolve_share_token(db, token, now)
    return share_token.request_id
