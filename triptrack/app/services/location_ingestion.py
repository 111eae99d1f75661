"""
Location ingestion service.

Two location sources coexist:
1. the driver's live status row (one per driver, overwritten)
2. the per-request historical ping log

`resolve_position` decides which one a trip's viewers see.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.clock import as_naive_utc, utcnow
from triptrack.app.core.config import settings
from triptrack.app.models.booking import Booking
from triptrack.app.models.driver_location import DriverLiveStatus, RequestLocationPing
from triptrack.app.services.driver_assignment import active_driver_ids, active_trip_ids
from triptrack.app.services.realtime import (
    ChangeOperation,
    driver_topic,
    publish_change,
    request_topic,
    row_to_dict,
    trip_topic,
)

logger = logging.getLogger("triptrack.location")


@dataclass(frozen=True)
class LiveSource:
    driver_id: int

    kind = "live"


@dataclass(frozen=True)
class HistoricalSource:
    request_id: int

    kind = "historical"


PositionSource = Union[LiveSource, HistoricalSource]


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    updated_at: datetime
    source: PositionSource

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


def is_live_usable(row, now: datetime, stale_after: timedelta) -> bool:
    """Available, has both coordinates, and was updated within `stale_after`."""
    if not row.is_available or row.lat is None or row.lng is None:
        return False
    return now - as_naive_utc(row.updated_at) <= stale_after


def resolve_position(
    live_rows: Iterable,
    historical_rows: Iterable,
    now: datetime,
    stale_after: timedelta
) -> Optional[Position]:
    """
    Pick the position to display for a trip.

    Args:
        live_rows: live status rows of the trip's active drivers, in
            assignment order
        historical_rows: pings of the requests booked on the trip
        now: naive UTC reference time
        stale_after: maximum age of a usable live status row

    Returns:
        The first usable live row, else the newest historical ping, else None.
        A usable live row wins even when a historical ping is newer.
    """
    now = as_naive_utc(now)
    for row in live_rows:
        if is_live_usable(row, now, stale_after):
            return Position(
                lat=row.lat,
                lng=row.lng,
                updated_at=as_naive_utc(row.updated_at),
                source=LiveSource(driver_id=row.driver_id),
            )

    newest = None
    for row in historical_rows:
        if newest is None or as_naive_utc(row.updated_at) > as_naive_utc(newest.updated_at):
            newest = row
    if newest is not None:
        return Position(
            lat=newest.lat,
            lng=newest.lng,
            updated_at=as_naive_utc(newest.updated_at),
            source=HistoricalSource(request_id=newest.request_id),
        )
    return None


async def resolve_current_position(
    db: AsyncSession,
    trip_id: int,
    now: Optional[datetime] = None
) -> Optional[Position]:
    """Resolve the trip's current position from the database."""
    driver_ids = await active_driver_ids(db, trip_id)

    live_rows = []
    if driver_ids:
        result = await db.execute(
            select(DriverLiveStatus).where(DriverLiveStatus.driver_id.in_(driver_ids))
        )
        by_driver = {row.driver_id: row for row in result.scalars().all()}
        live_rows = [by_driver[driver_id] for driver_id in driver_ids if driver_id in by_driver]

    booked_requests = select(Booking.request_id).where(Booking.trip_id == trip_id)
    result = await db.execute(
        select(RequestLocationPing)
        .where(RequestLocationPing.request_id.in_(booked_requests))
        .order_by(RequestLocationPing.updated_at.desc(), RequestLocationPing.id.desc())
        .limit(1)
    )
    historical_rows = list(result.scalars().all())

    return resolve_position(
        live_rows,
        historical_rows,
        now or utcnow(),
        timedelta(seconds=settings.live_status_stale_seconds)
    )


async def record_live_status(
    db: AsyncSession,
    driver_id: int,
    is_available: bool,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    feed=None,
    now: Optional[datetime] = None
) -> DriverLiveStatus:
    """
    Upsert the driver's live status row.

    Going unavailable without coordinates keeps the last known ones.
    """
    now = now or utcnow()
    result = await db.execute(
        select(DriverLiveStatus).where(DriverLiveStatus.driver_id == driver_id)
    )
    status_row = result.scalar_one_or_none()
    operation = ChangeOperation.UPDATE

    if status_row is None:
        status_row = DriverLiveStatus(driver_id=driver_id)
        db.add(status_row)
        operation = ChangeOperation.INSERT

    if lat is not None and lng is not None:
        status_row.lat = lat
        status_row.lng = lng
    status_row.is_available = is_available
    status_row.updated_at = now

    await db.commit()
    await db.refresh(status_row)

    if not is_available:
        logger.info("Driver %s went unavailable", driver_id)

    topics = [driver_topic(driver_id)]
    topics.extend(trip_topic(trip_id) for trip_id in await active_trip_ids(db, driver_id))
    await publish_change(feed, topics, "driver_live_status", operation, row_to_dict(status_row))
    return status_row


async def record_request_ping(
    db: AsyncSession,
    request_id: int,
    lat: float,
    lng: float,
    accuracy_meters: Optional[float] = None,
    driver_id: Optional[int] = None,
    feed=None,
    now: Optional[datetime] = None
) -> RequestLocationPing:
    """Append a ping to the request's historical log."""
    ping = RequestLocationPing(
        request_id=request_id,
        driver_id=driver_id,
        lat=lat,
        lng=lng,
        accuracy_meters=accuracy_meters,
        updated_at=now or utcnow(),
    )
    db.add(ping)
    await db.commit()
    await db.refresh(ping)

    topics = [request_topic(request_id)]
    result = await db.execute(select(Booking.trip_id).where(Booking.request_id == request_id))
    trip_id = result.scalar_one_or_none()
    if trip_id is not None:
        topics.append(trip_topic(trip_id))
    await publish_change(feed, topics, "request_location_pings", ChangeOperation.INSERT, row_to_dict(ping))
    return ping
