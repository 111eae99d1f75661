"""
Trip database model.

One dated, directional instance of travel created by the trip scheduler.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, Date, Time, DateTime, Enum
from sqlalchemy.sql import func
from triptrack.app.db.session import Base
from triptrack.app.models.trip_enums import TripStatus, TripType


class Trip(Base):
    """
    Trip model.

    Anchors are copied from the Route at scheduling time so a trip keeps
    rendering even if its route is edited later. When `has_stop_override`
    is set, the trip's own stops supersede the route's defaults.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Template reference (nullable: a trip may carry its own anchors)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=True, index=True)

    trip_type = Column(Enum(TripType), nullable=False)
    trip_date = Column(Date, nullable=False, index=True)
    meeting_time = Column(Time, nullable=True)
    departure_time = Column(Time, nullable=True)

    # Start anchor
    start_name = Column(String(200), nullable=True)
    start_lat = Column(Float, nullable=False)
    start_lng = Column(Float, nullable=False)

    # End anchor
    end_name = Column(String(200), nullable=True)
    end_lat = Column(Float, nullable=False)
    end_lng = Column(Float, nullable=False)

    has_stop_override = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    status = Column(Enum(TripStatus), default=TripStatus.SCHEDULED, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Trip(id={self.id}, date={self.trip_date}, type='{self.trip_type.value}', status='{self.status.value}')>"
