"""
Route and stop Pydantic schemas.

Defines request and response models for the topology store.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from triptrack.app.models.trip_enums import StopKind


class AnchorInput(BaseModel):
    """Named start/end point. Coordinates may be left empty on drafts."""
    name: Optional[str] = Field(None, max_length=200)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class StopInput(BaseModel):
    """
    Schema for one stop in an ordered stop list.

    `id` identifies an existing stop when a list is edited; bookings that
    selected it keep pointing at it.
    """
    id: Optional[int] = Field(None, description="Existing stop to update in place")
    name: str = Field(..., min_length=1, max_length=200)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    order_index: int = Field(..., ge=0)
    kind: StopKind = StopKind.BOTH


class StopResponse(BaseModel):
    """Schema for stop response."""
    id: int
    route_id: Optional[int]
    trip_id: Optional[int]
    name: str
    lat: float
    lng: float
    order_index: int
    kind: StopKind

    class Config:
        from_attributes = True


class RouteCreate(BaseModel):
    """Schema for creating a new route."""
    name: str = Field(..., min_length=1, max_length=200, description="Route name")
    start: AnchorInput = Field(default_factory=AnchorInput)
    end: AnchorInput = Field(default_factory=AnchorInput)
    stops: List[StopInput] = []


class RouteStopsReplace(BaseModel):
    """Schema for replacing a route's default stops."""
    stops: List[StopInput]


class RouteResponse(BaseModel):
    """Schema for route response."""
    id: int
    name: str
    start_name: Optional[str]
    start_lat: Optional[float]
    start_lng: Optional[float]
    end_name: Optional[str]
    end_lat: Optional[float]
    end_lng: Optional[float]
    is_active: bool
    created_at: datetime
    updated_at: datetime
    stops: List[StopResponse] = []

    class Config:
        from_attributes = True
