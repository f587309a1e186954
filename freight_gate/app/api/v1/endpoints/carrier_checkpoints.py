"""
Carrier Checkpoint API Endpoints.

Carriers request approval for each checkpoint and then verify it with the
one-time code an admin issued.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.db.session import get_db
from freight_gate.app.models.checkpoint_enums import CheckpointKind
from freight_gate.app.core.guards import require_carrier
from freight_gate.app.schemas.checkpoint import (
    VerifyCodeRequest, CheckpointRequestResponse, VerifyResponse
)
from freight_gate.app.services.trip_progression import TripProgressionService, get_trip_progression

router = APIRouter(prefix="/carrier/shipments", tags=["Carrier - Checkpoints"])


@router.post(
    "/{shipment_id}/checkpoints/{kind}/request",
    response_model=CheckpointRequestResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def request_checkpoint(
    shipment_id: int = Path(..., description="Shipment ID"),
    kind: CheckpointKind = Path(..., description="trip_start, route_start or trip_end"),
    current_user: dict = Depends(require_carrier),
    db: AsyncSession = Depends(get_db),
    progression: TripProgressionService = Depends(get_trip_progression)
):
    """
    Request admin approval for a checkpoint (Carrier only).

    Validates:
    - Carrier owns the shipment
    - Previous checkpoint is verified
    - Checkpoint has not been requested yet

    Returns the queued request; poll the snapshot or listen on the event
    stream for the approval.
    """
    return await progression.request_checkpoint(
        db, shipment_id, kind, carrier_id=current_user["user_id"]
    )


@router.post("/{shipment_id}/checkpoints/{kind}/verify", response_model=VerifyResponse)
async def verify_checkpoint(
    req: VerifyCodeRequest,
    shipment_id: int = Path(..., description="Shipment ID"),
    kind: CheckpointKind = Path(..., description="trip_start, route_start or trip_end"),
    current_user: dict = Depends(require_carrier),
    db: AsyncSession = Depends(get_db),
    progression: TripProgressionService = Depends(get_trip_progression)
):
    """
    Verify a checkpoint with its one-time code (Carrier only).

    On success the shipment status advances. A wrong code uses one attempt;
    an expired code sends the checkpoint back to NOT_REQUESTED.
    """
    shipment = await progression.verify_checkpoint(
        db, shipment_id, kind, req.code, carrier_id=current_user["user_id"]
    )
    return VerifyResponse(
        shipment_id=shipment.id,
        checkpoint_kind=kind,
        status=shipment.status,
    )
