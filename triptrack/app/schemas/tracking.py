"""
Tracking view schemas.

The tracking view is what every viewer renders: passenger screen, staff
console, the driver's manifest and unauthenticated share links.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional

from triptrack.app.models.trip_enums import BookingStatus, TripStatus, TripType
from triptrack.app.schemas.route import StopResponse


class TrackingMessage:
    """Banner shown with every view; soft failures never dead-end the screen."""
    NOT_TRACKING = "not_tracking"
    TRACKING = "tracking"
    ETA_UNAVAILABLE = "eta_unavailable"
    TRIP_FINISHED = "trip_finished"


class PointResponse(BaseModel):
    name: Optional[str] = None
    lat: float
    lng: float


class PositionResponse(BaseModel):
    """Where the vehicle is, and which source said so."""
    lat: float
    lng: float
    source: str  # "live" or "historical"
    driver_id: Optional[int] = None
    request_id: Optional[int] = None
    updated_at: datetime


class EtaResponse(BaseModel):
    duration_seconds: int
    distance_meters: int
    duration_text: str
    distance_text: str
    approximate: bool = False
    computed_at: datetime
    renderable_path: Optional[str] = None


class TrackingView(BaseModel):
    """Full tracking view for one booking."""
    request_id: int
    trip_id: int
    trip_type: TripType
    trip_status: TripStatus
    booking_status: BookingStatus
    message: str
    start: PointResponse
    end: PointResponse
    destination: PointResponse
    stops: List[StopResponse] = []
    position: Optional[PositionResponse] = None
    eta: Optional[EtaResponse] = None
    eta_stale: bool = False
    eta_unavailable_reason: Optional[str] = None
    progress_percent: Optional[float] = None
    generated_at: datetime


class PassengerEta(BaseModel):
    """One row of the driver's passenger manifest."""
    request_id: int
    passenger_user_id: Optional[int]
    booking_status: BookingStatus
    stop: PointResponse
    eta: Optional[EtaResponse] = None
    eta_unavailable_reason: Optional[str] = None


class PassengerManifest(BaseModel):
    trip_id: int
    trip_status: TripStatus
    position: Optional[PositionResponse] = None
    passengers: List[PassengerEta]
