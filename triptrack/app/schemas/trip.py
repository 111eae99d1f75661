"""
Trip schemas.

Schemas for trip scheduling, driver assignment and visibility.
"""

from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import date, time, datetime

from triptrack.app.models.trip_enums import TripType, TripStatus
from triptrack.app.schemas.route import AnchorInput, StopInput, StopResponse


class Recurrence(BaseModel):
    """
    Recurring-date expansion. Exactly one of the fields must be set.

    - days: N consecutive days starting at the template date
    - until_date: every day from the template date to this date, inclusive
    - dates: an explicit list of dates
    """
    days: Optional[int] = Field(None, ge=1)
    until_date: Optional[date] = None
    dates: Optional[List[date]] = None

    @model_validator(mode="after")
    def exactly_one_mode(self):
        chosen = [value for value in (self.days, self.until_date, self.dates) if value is not None]
        if len(chosen) != 1:
            raise ValueError("Exactly one of days, until_date or dates must be given")
        return self


class TripTemplate(BaseModel):
    """Everything a scheduled trip copies."""
    route_id: Optional[int] = None
    trip_type: TripType
    trip_date: date
    meeting_time: Optional[time] = None
    departure_time: Optional[time] = None
    start: Optional[AnchorInput] = None  # Falls back to the route's start anchor
    end: Optional[AnchorInput] = None  # Falls back to the route's end anchor
    stop_overrides: Optional[List[StopInput]] = None
    is_active: bool = True


class TripCreateRequest(BaseModel):
    """Request body for creating one or many trips."""
    template: TripTemplate
    recurrence: Optional[Recurrence] = None


class TripUpdate(BaseModel):
    """Schema for soft-disabling / re-enabling a trip."""
    is_active: bool


class TripStatusUpdate(BaseModel):
    status: TripStatus


class TripStopsReplace(BaseModel):
    """Replace a trip's override list. An empty list reverts to route defaults."""
    stops: List[StopInput]


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    route_id: Optional[int]
    trip_type: TripType
    trip_date: date
    meeting_time: Optional[time]
    departure_time: Optional[time]
    start_name: Optional[str]
    start_lat: float
    start_lng: float
    end_name: Optional[str]
    end_lat: float
    end_lng: float
    has_stop_override: bool
    is_active: bool
    status: TripStatus
    created_at: datetime
    updated_at: datetime
    effective_stops: List[StopResponse] = []

    class Config:
        from_attributes = True


class TripCreateResponse(BaseModel):
    """Response after trip scheduling."""
    trips: List[TripResponse]
    trips_created: int


class DriverAssignmentRequest(BaseModel):
    driver_id: int = Field(..., gt=0)


class DriverAssignmentResponse(BaseModel):
    trip_id: int
    driver_id: int
    is_active: bool
    assigned_at: datetime

    class Config:
        from_attributes = True
