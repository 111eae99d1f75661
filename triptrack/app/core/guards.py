"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from triptrack.app.models.enums import UserRole
from triptrack.app.core.dependencies import get_current_user
from triptrack.app.core.exceptions import InsufficientPermissionsError
from triptrack.app.models.booking import Booking
from triptrack.app.models.driver import Driver, DriverAssignment

STAFF_ROLES = [UserRole.ADMIN, UserRole.STAFF]


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/staff/trips")
        async def create(current_user: dict = Depends(require_role(STAFF_ROLES))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        return enforce_role(current_user, allowed_roles)

    return role_checker


def enforce_role(current_user: dict, allowed_roles: List[UserRole]) -> dict:
    """Plain-function form of `require_role` for WebSocket handlers."""
    user_role = UserRole(current_user.get("role"))
    if user_role not in allowed_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
        )
    return current_user


def is_staff(current_user: dict) -> bool:
    return current_user.get("role") in {role.value for role in STAFF_ROLES}


async def get_driver_for_user(db: AsyncSession, current_user: dict) -> Driver:
    """Resolve the driver row linked to a DRIVER token."""
    result = await db.execute(
        select(Driver).where(Driver.user_id == current_user["user_id"])
    )
    driver = result.scalar_one_or_none()
    if not driver or not driver.is_active:
        raise InsufficientPermissionsError("Your account is not linked to an active driver")
    return driver


async def ensure_can_view_booking(db: AsyncSession, booking: Booking, current_user: dict) -> None:
    """
    Enforce who may watch a booking's tracking view.

    Staff see everything, passengers only their own request, drivers only
    bookings on trips they are actively assigned to.
    """
    if is_staff(current_user):
        return

    role = current_user.get("role")
    if role == UserRole.PASSENGER.value and booking.passenger_user_id == current_user["user_id"]:
        return

    if role == UserRole.DRIVER.value:
        driver = await get_driver_for_user(db, current_user)
        result = await db.execute(
            select(DriverAssignment.id).where(
                DriverAssignment.trip_id == booking.trip_id,
                DriverAssignment.driver_id == driver.id,
                DriverAssignment.is_active.is_(True)
            )
        )
        if result.first():
            return

    raise InsufficientPermissionsError(
        "Access denied. You do not have permission to access this booking.",
        details={"request_id": booking.request_id}
    )
