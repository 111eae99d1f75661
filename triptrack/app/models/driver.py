"""
Driver and trip-driver assignment models.

Driver rows are owned by the driver-management screens; this service reads
them and manages which drivers serve which trip.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from triptrack.app.db.session import Base


class Driver(Base):
    """Driver linked to an authenticated user account."""
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, unique=True, index=True, nullable=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Driver(id={self.id}, name='{self.name}')>"


class DriverAssignment(Base):
    """
    Many-to-many Trip <-> Driver link.

    Several drivers may serve one trip (convoy). Unassigning flips
    `is_active` instead of deleting the row.
    """
    __tablename__ = "trip_drivers"
    __table_args__ = (
        UniqueConstraint("trip_id", "driver_id", name="uq_trip_drivers_trip_driver"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<DriverAssignment(trip_id={self.trip_id}, driver_id={self.driver_id}, active={self.is_active})>"
