"""
Share link schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ShareLinkCreate(BaseModel):
    horizon_hours: Optional[int] = Field(None, ge=1, le=24 * 14, description="Defaults to the configured horizon")


class ShareLinkResponse(BaseModel):
    """The raw token is returned exactly once, here."""
    token: str
    url: str
    request_id: int
    expires_at: datetime
