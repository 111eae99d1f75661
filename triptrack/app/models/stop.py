"""
Stop database model.

One table holds both route default stops and per-trip override stops so
that every stop id lives in a single namespace.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from triptrack.app.db.session import Base
from triptrack.app.models.trip_enums import StopKind


class Stop(Base):
    """
    Stop model.

    Owned by exactly one of a Route (default stop) or a Trip (override stop).
    `order_index` is unique per owner.
    """
    __tablename__ = "stops"
    __table_args__ = (
        CheckConstraint(
            "(route_id IS NULL) <> (trip_id IS NULL)",
            name="ck_stops_single_owner"
        ),
        UniqueConstraint("route_id", "order_index", name="uq_stops_route_order"),
        UniqueConstraint("trip_id", "order_index", name="uq_stops_trip_order"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owner (exactly one)
    route_id = Column(Integer, ForeignKey('routes.id', ondelete="CASCADE"), nullable=True, index=True)
    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=True, index=True)

    # Stop details
    name = Column(String(200), nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    order_index = Column(Integer, nullable=False)
    kind = Column(Enum(StopKind), default=StopKind.BOTH, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        owner = f"route_id={self.route_id}" if self.route_id else f"trip_id={self.trip_id}"
        return f"<Stop(id={self.id}, {owner}, order={self.order_index}, kind='{self.kind.value}')>"
