"""
Route database model.

A route is a reusable template: start/end anchors plus an ordered list of
default stops.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from sqlalchemy.sql import func
from triptrack.app.db.session import Base


class Route(Base):
    """
    Route model.

    Anchors may be left empty while a route is drafted by the
    route-management screens; scheduling rejects routes without them.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False)

    # Start anchor
    start_name = Column(String(200), nullable=True)
    start_lat = Column(Float, nullable=True)
    start_lng = Column(Float, nullable=True)

    # End anchor
    end_name = Column(String(200), nullable=True)
    end_lat = Column(Float, nullable=True)
    end_lng = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}')>"
