"""
Driver location models.

Two sources exist side by side: the per-driver live status row written by
the driver's availability toggle, and the older per-request ping log that
trips recorded before live status existed.
"""

from sqlalchemy import Column, Integer, Float, Boolean, ForeignKey, DateTime
from triptrack.app.db.session import Base


class DriverLiveStatus(Base):
    """
    Current position of a driver.

    Single mutable row per driver, overwritten on every push.
    """
    __tablename__ = "driver_live_status"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), unique=True, nullable=False, index=True)

    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    is_available = Column(Boolean, default=False, nullable=False)

    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<DriverLiveStatus(driver_id={self.driver_id}, available={self.is_available}, lat={self.lat}, lng={self.lng})>"


class RequestLocationPing(Base):
    """
    Historical location log keyed by request.

    Append-only breadcrumb trail.
    """
    __tablename__ = "request_location_pings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    request_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)  # GPS accuracy in meters

    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<RequestLocationPing(request_id={self.request_id}, lat={self.lat}, lng={self.lng})>"
