"""
Shipment timeline service.

Records checkpoint activity as ShipmentEvent rows for the admin back-office
and for audit. Entries are added to the caller's transaction so a rejected
transition leaves no trace.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from freight_gate.app.models.shipment_event import ShipmentEvent


class AuditAction:
    """Standardized timeline action constants."""
    SHIPMENT_CREATED = "SHIPMENT_CREATED"

    CHECKPOINT_REQUESTED = "CHECKPOINT_REQUESTED"
    CHECKPOINT_APPROVED = "CHECKPOINT_APPROVED"
    CHECKPOINT_REJECTED = "CHECKPOINT_REJECTED"
    CHECKPOINT_VERIFIED = "CHECKPOINT_VERIFIED"

    OTP_REGENERATED = "OTP_REGENERATED"
    OTP_FAILED = "OTP_FAILED"
    OTP_EXPIRED = "OTP_EXPIRED"

    RATING_OBLIGATION_ARMED = "RATING_OBLIGATION_ARMED"
    RATING_SUBMITTED = "RATING_SUBMITTED"
    RATING_DISMISSED = "RATING_DISMISSED"


async def log_event(
    db: AsyncSession,
    shipment_id: int,
    action: str,
    actor_id: Optional[int] = None,
    actor_role: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> ShipmentEvent:
    """
    Append an event to a shipment's timeline.

    Args:
        db: Database session (caller commits)
        shipment_id: Shipment the event belongs to
        action: Action performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_role: Role of the actor (CARRIER, ADMIN, or None for system)
        metadata: Additional context as JSON

    Returns:
        Created ShipmentEvent instance
    """
    event = ShipmentEvent(
        shipment_id=shipment_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        meta_data=metadata
    )

    db.add(event)
    await db.flush()

    return event


async def get_timeline(
    db: AsyncSession,
    shipment_id: int,
    action: Optional[str] = None,
    limit: int = 100
) -> list[ShipmentEvent]:
    """
    Retrieve a shipment's timeline, oldest first.

    Args:
        db: Database session
        shipment_id: Shipment to read
        action: Filter by action type
        limit: Maximum number of records to return
    """
    query = select(ShipmentEvent).where(ShipmentEvent.shipment_id == shipment_id)

    if action:
        query = query.where(ShipmentEvent.action == action)

    query = query.order_by(ShipmentEvent.id).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
