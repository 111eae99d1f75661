"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Query, WebSocket, WebSocketException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from triptrack.app.core.jwt import decode_access_token
from triptrack.app.models.enums import UserRole

# HTTP Bearer security scheme
security = HTTPBearer()


def _validate_payload(payload: Optional[dict]) -> Optional[str]:
    """Return an error message for an unusable payload, None if it is fine."""
    if payload is None:
        return "Could not validate credentials"
    if not payload.get("user_id"):
        return "Invalid token payload"
    try:
        UserRole(payload.get("role"))
    except ValueError:
        return "Invalid role in token"
    return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Validates the token signature and expiry and checks that the payload
    carries `user_id` and a known `role`.

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    payload = decode_access_token(credentials.credentials)
    error = _validate_payload(payload)
    if error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_websocket_user(
    websocket: WebSocket,
    token: str = Query(..., description="JWT access token"),
) -> dict:
    """WebSocket variant: browsers cannot set headers, so the token comes as `?token=`."""
    payload = decode_access_token(token)
    error = _validate_payload(payload)
    if error:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=error)
    return payload
