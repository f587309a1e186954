"""
Shipment Visibility API Endpoints.

Read-only views polled by the carrier app and the admin back-office.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.db.session import get_db
from freight_gate.app.models.enums import UserRole
from freight_gate.app.core.guards import require_role, OwnershipGuard
from freight_gate.app.schemas.checkpoint import CheckpointSnapshotResponse
from freight_gate.app.schemas.shipment import ShipmentResponse
from freight_gate.app.services.approval_gate import ApprovalGate
from freight_gate.app.services.shipment_service import ShipmentService

router = APIRouter(prefix="/shipments", tags=["Shipments"])

ownership_guard = OwnershipGuard()


@router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.CARRIER, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Shipment details (owning carrier or admin)."""
    shipment = await ShipmentService.get_shipment_or_404(db, shipment_id)
    ownership_guard.enforce(shipment.carrier_id, current_user, "shipment")
    return shipment


@router.get("/{shipment_id}/checkpoints", response_model=CheckpointSnapshotResponse)
async def get_checkpoint_snapshot(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.CARRIER, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Requested/approved/verified flags for all three checkpoints.

    This is the source of truth; the event stream only tells the client
    when to read it again.
    """
    shipment = await ShipmentService.get_shipment_or_404(db, shipment_id)
    ownership_guard.enforce(shipment.carrier_id, current_user, "shipment")
    return await ApprovalGate.get_snapshot(db, shipment_id)
