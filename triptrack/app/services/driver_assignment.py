"""
Driver assignment service.

Which drivers serve which trip. Assignment order (`assigned_at`, `id`)
decides whose live position wins when several drivers share a trip.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from triptrack.app.core.clock import utcnow
from triptrack.app.core.exceptions import ResourceNotFoundError
from triptrack.app.models.driver import Driver, DriverAssignment
from triptrack.app.services.audit import log_event, AuditAction
from triptrack.app.services.realtime import ChangeOperation, publish_change, trip_topic, driver_topic, row_to_dict
from triptrack.app.services.trip_scheduler import get_trip


async def get_driver(db: AsyncSession, driver_id: int) -> Driver:
    result = await db.execute(select(Driver).where(Driver.id == driver_id))
    driver = result.scalar_one_or_none()
    if not driver:
        raise ResourceNotFoundError("Driver", driver_id)
    return driver


async def assign_driver(
    db: AsyncSession,
    trip_id: int,
    driver_id: int,
    actor: Optional[dict] = None,
    feed=None
) -> DriverAssignment:
    """
    Assign a driver to a trip.

    Idempotent: an existing active assignment is returned unchanged, an
    inactive one is re-activated and moves to the end of the assignment
    order.

    Raises:
        ResourceNotFoundError: unknown trip, unknown or inactive driver
    """
    await get_trip(db, trip_id)
    driver = await get_driver(db, driver_id)
    if not driver.is_active:
        raise ResourceNotFoundError("Active driver", driver_id)

    result = await db.execute(
        select(DriverAssignment).where(
            DriverAssignment.trip_id == trip_id,
            DriverAssignment.driver_id == driver_id
        )
    )
    assignment = result.scalar_one_or_none()

    if assignment and assignment.is_active:
        return assignment

    if assignment:
        assignment.is_active = True
        assignment.assigned_at = utcnow()
    else:
        assignment = DriverAssignment(
            trip_id=trip_id,
            driver_id=driver_id,
            is_active=True,
            assigned_at=utcnow()
        )
        db.add(assignment)

    await db.flush()
    await log_event(
        db,
        AuditAction.DRIVER_ASSIGNED,
        actor=actor,
        metadata={"trip_id": trip_id, "driver_id": driver_id},
        commit=False
    )
    await db.commit()

    await publish_change(
        feed,
        [trip_topic(trip_id), driver_topic(driver_id)],
        "trip_drivers",
        ChangeOperation.UPDATE,
        row_to_dict(assignment)
    )
    return assignment


async def unassign_driver(
    db: AsyncSession,
    trip_id: int,
    driver_id: int,
    actor: Optional[dict] = None,
    feed=None
) -> DriverAssignment:
    result = await db.execute(
        select(DriverAssignment).where(
            DriverAssignment.trip_id == trip_id,
            DriverAssignment.driver_id == driver_id
        )
    )
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise ResourceNotFoundError("Driver assignment", f"{trip_id}/{driver_id}")

    if not assignment.is_active:
        return assignment

    assignment.is_active = False
    await log_event(
        db,
        AuditAction.DRIVER_UNASSIGNED,
        actor=actor,
        metadata={"trip_id": trip_id, "driver_id": driver_id},
        commit=False
    )
    await db.commit()

    await publish_change(
        feed,
        [trip_topic(trip_id), driver_topic(driver_id)],
        "trip_drivers",
        ChangeOperation.UPDATE,
        row_to_dict(assignment)
    )
    return assignment


async def active_driver_ids(db: AsyncSession, trip_id: int) -> List[int]:
    """Drivers actively serving a trip, in assignment order."""
    result = await db.execute(
        select(DriverAssignment.driver_id).where(
            DriverAssignment.trip_id == trip_id,
            DriverAssignment.is_active.is_(True)
        ).order_by(DriverAssignment.assigned_at, DriverAssignment.id)
    )
    return list(result.scalars().all())


async def active_trip_ids(db: AsyncSession, driver_id: int) -> List[int]:
    """Trips a driver is actively assigned to."""
    result = await db.execute(
        select(DriverAssignment.trip_id).where(
            DriverAssignment.driver_id == driver_id,
            DriverAssignment.is_active.is_(True)
        ).order_by(DriverAssignment.trip_id)
    )
    return list(result.scalars().all())
