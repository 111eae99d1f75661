"""
Booking schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from triptrack.app.models.trip_enums import BookingStatus


class BookingRequest(BaseModel):
    """Schema for booking (or re-booking) a request onto a trip."""
    trip_id: int = Field(..., gt=0)
    pickup_stop_id: Optional[int] = Field(None, gt=0)
    dropoff_stop_id: Optional[int] = Field(None, gt=0)
    passenger_user_id: Optional[int] = Field(None, gt=0, description="Staff bookings only")


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    """Schema for booking response."""
    id: int
    request_id: int
    passenger_user_id: Optional[int]
    trip_id: int
    selected_pickup_stop_id: Optional[int]
    selected_dropoff_stop_id: Optional[int]
    status: BookingStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
