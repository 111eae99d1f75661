"""
Audit Log Database Model.

Trail of staff, driver and passenger actions on routes, trips and bookings.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from triptrack.app.db.session import Base


class AuditLog(Base):
    """
    One audited action.

    `trip_id` and `request_id` are copied out of the metadata so a trip's
    or a request's trail can be listed without JSON queries.

    Events logged:
    - ROUTE_CREATED / ROUTE_STOPS_REPLACED
    - TRIP_CREATED (one per scheduled trip) / TRIP_UPDATED / TRIP_STATUS_CHANGED
    - DRIVER_ASSIGNED / DRIVER_UNASSIGNED
    - BOOKING_CREATED / BOOKING_UPDATED / BOOKING_REASSIGNED / BOOKING_CONFIRMED
    - SHARE_LINK_ISSUED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Token claims of the caller (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)
    actor_role = Column(String(20), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    trip_id = Column(Integer, index=True, nullable=True)
    request_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', trip={self.trip_id}, request={self.request_id})>"
