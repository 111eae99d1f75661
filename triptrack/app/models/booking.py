"""
Booking database model.

Links a passenger's visit request to the trip and stop it is scheduled on.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from triptrack.app.db.session import Base
from triptrack.app.models.trip_enums import BookingStatus


class Booking(Base):
    """
    Booking model.

    One booking per request (`request_id` is unique). Moving a request to
    another trip updates this row in place.
    Null stop selections mean "use the trip default".
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Request is owned by the visit-request intake
    request_id = Column(Integer, unique=True, nullable=False, index=True)
    passenger_user_id = Column(Integer, nullable=True, index=True)

    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    selected_pickup_stop_id = Column(Integer, ForeignKey('stops.id', ondelete="SET NULL"), nullable=True)
    selected_dropoff_stop_id = Column(Integer, ForeignKey('stops.id', ondelete="SET NULL"), nullable=True)

    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING_APPROVAL, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Booking(request_id={self.request_id}, trip_id={self.trip_id}, status='{self.status.value}')>"
