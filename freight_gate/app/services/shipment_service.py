"""
Shipment service.

Creates shipments when a carrier is assigned to a load and keeps the
counterparty column in sync with the marketplace.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.exceptions import ResourceNotFoundError
from freight_gate.app.models.checkpoint_enums import CheckpointState, ShipmentStatus
from freight_gate.app.models.shipment import Shipment
from freight_gate.app.services.audit import AuditAction, log_event


class ShipmentService:

    @staticmethod
    async def get_shipment_or_404(db: AsyncSession, shipment_id: int) -> Shipment:
        result = await db.execute(
            select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
        )
        shipment = result.scalar_one_or_none()
        if shipment is None:
            raise ResourceNotFoundError("Shipment", shipment_id)
        return shipment

    @staticmethod
    async def create_shipment(
        db: AsyncSession,
        load_id: int,
        carrier_id: int,
        shipper_id: Optional[int] = None,
        actor_id: Optional[int] = None
    ) -> Shipment:
        """
        Create the shipment for a load-carrier assignment.

        All checkpoints start NOT_REQUESTED. Caller commits.
        """
        shipment = Shipment(
            load_id=load_id,
            carrier_id=carrier_id,
            shipper_id=shipper_id,
            status=ShipmentStatus.PICKUP_SCHEDULED,
            trip_start_state=CheckpointState.NOT_REQUESTED,
            route_start_state=CheckpointState.NOT_REQUESTED,
            trip_end_state=CheckpointState.NOT_REQUESTED,
            version=0,
        )
        db.add(shipment)
        await db.flush()

        await log_event(
            db=db,
            shipment_id=shipment.id,
            action=AuditAction.SHIPMENT_CREATED,
            actor_id=actor_id,
            actor_role="ADMIN" if actor_id is not None else None,
            metadata={"load_id": load_id, "carrier_id": carrier_id}
        )
        return shipment

    @staticmethod
    async def set_counterparty(db: AsyncSession, shipment_id: int, shipper_id: int) -> Shipment:
        """Record the shipper once the marketplace knows it. Caller commits."""
        shipment = await ShipmentService.get_shipment_or_404(db, shipment_id)
        shipment.shipper_id = shipper_id
        await db.flush()
        return shipment
