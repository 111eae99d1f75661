"""
Audit logging service for tracking staff, driver and passenger actions.

Provides centralized logging for compliance and dispute handling.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from triptrack.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_STOPS_REPLACED = "ROUTE_STOPS_REPLACED"

    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_STOPS_REPLACED = "TRIP_STOPS_REPLACED"
    TRIP_STATUS_CHANGED = "TRIP_STATUS_CHANGED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_UNASSIGNED = "DRIVER_UNASSIGNED"

    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_UPDATED = "BOOKING_UPDATED"
    BOOKING_REASSIGNED = "BOOKING_REASSIGNED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_STATUS_CHANGED = "BOOKING_STATUS_CHANGED"

    SHARE_LINK_ISSUED = "SHARE_LINK_ISSUED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[dict] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Token payload of the user performing the action (None for system)
        metadata: Additional context as JSON
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created AuditLog instance
    """
    metadata = metadata or {}
    actor = actor or {}
    audit_log = AuditLog(
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        actor_role=actor.get("role"),
        action=action,
        trip_id=metadata.get("trip_id"),
        request_id=metadata.get("request_id"),
        meta_data=metadata or None
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def get_audit_logs(
    db: AsyncSession,
    action: Optional[str] = None,
    trip_id: Optional[int] = None,
    request_id: Optional[int] = None,
    limit: int = 100
) -> List[AuditLog]:
    """Fetch recent audit entries, newest first."""
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
    if trip_id is not None:
        query = query.where(AuditLog.trip_id == trip_id)
    if request_id is not None:
        query = query.where(AuditLog.request_id == request_id)
    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
