"""
Driver location schemas.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional


class LiveStatusUpdate(BaseModel):
    """
    Live status push from the driver's device.

    Going unavailable may omit coordinates; going available requires them.
    """
    is_available: bool
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def coordinates_when_available(self):
        if self.is_available and (self.lat is None or self.lng is None):
            raise ValueError("lat and lng are required when is_available is true")
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be given together")
        return self


class LiveStatusResponse(BaseModel):
    driver_id: int
    lat: Optional[float]
    lng: Optional[float]
    is_available: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class LocationPingRecord(BaseModel):
    """Schema for the legacy per-request GPS ping."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, gt=0)


class LocationPingResponse(BaseModel):
    id: int
    request_id: int
    lat: float
    lng: float
    accuracy_meters: Optional[float]
    updated_at: datetime

    class Config:
        from_attributes = True
