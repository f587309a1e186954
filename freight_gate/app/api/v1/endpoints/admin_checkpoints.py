"""
Admin Checkpoint API Endpoints.

Back-office review queue: approve or reject carrier requests, reissue
codes, create shipments and inspect their history.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from freight_gate.app.db.session import get_db
from freight_gate.app.models.checkpoint_enums import CheckpointRequestStatus
from freight_gate.app.core.guards import require_admin
from freight_gate.app.schemas.checkpoint import (
    ApprovalResponse, CheckpointRequestResponse, RejectRequest
)
from freight_gate.app.schemas.shipment import (
    ShipmentCreate, CounterpartyUpdate, ShipmentResponse, ShipmentEventResponse
)
from freight_gate.app.services.audit import get_timeline
from freight_gate.app.services.shipment_service import ShipmentService
from freight_gate.app.services.trip_progression import (
    ApprovalResult,
    TripProgressionService,
    get_trip_progression,
    list_requests,
    list_requests_for_shipment,
)

router = APIRouter(prefix="/admin", tags=["Admin - Checkpoints"])


def _approval_response(result: ApprovalResult) -> ApprovalResponse:
    return ApprovalResponse(
        request=CheckpointRequestResponse.model_validate(result.request),
        code=result.code.code,
        expires_at=result.code.expires_at,
    )


# --- Shipments ---

@router.post("/shipments", response_model=ShipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    req: ShipmentCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Assign a carrier to a load. All checkpoints start NOT_REQUESTED."""
    shipment = await ShipmentService.create_shipment(
        db,
        load_id=req.load_id,
        carrier_id=req.carrier_id,
        shipper_id=req.shipper_id,
        actor_id=current_user["user_id"]
    )
    await db.commit()
    await db.refresh(shipment)
    return shipment


@router.patch("/shipments/{shipment_id}/counterparty", response_model=ShipmentResponse)
async def set_counterparty(
    req: CounterpartyUpdate,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Record the shipper for a shipment once the marketplace knows it."""
    shipment = await ShipmentService.set_counterparty(db, shipment_id, req.shipper_id)
    await db.commit()
    await db.refresh(shipment)
    return shipment


@router.get("/shipments/{shipment_id}/checkpoint-requests", response_model=List[CheckpointRequestResponse])
async def list_shipment_requests(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Every request ever made for a shipment, newest first."""
    await ShipmentService.get_shipment_or_404(db, shipment_id)
    return await list_requests_for_shipment(db, shipment_id)


@router.get("/shipments/{shipment_id}/timeline", response_model=List[ShipmentEventResponse])
async def shipment_timeline(
    shipment_id: int = Path(..., description="Shipment ID"),
    action: Optional[str] = Query(None, description="Filter by action"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Checkpoint activity for a shipment, oldest first."""
    await ShipmentService.get_shipment_or_404(db, shipment_id)
    return await get_timeline(db, shipment_id, action=action, limit=limit)


# --- Review queue ---

@router.get("/checkpoint-requests", response_model=List[CheckpointRequestResponse])
async def list_checkpoint_requests(
    request_status: Optional[CheckpointRequestStatus] = Query(
        CheckpointRequestStatus.PENDING, alias="status", description="Filter by request status"
    ),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Review queue. Defaults to pending requests, oldest first."""
    return await list_requests(db, status=request_status, limit=limit)


@router.post("/checkpoint-requests/{request_id}/approve", response_model=ApprovalResponse)
async def approve_request(
    request_id: int = Path(..., description="Checkpoint request ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    progression: TripProgressionService = Depends(get_trip_progression)
):
    """
    Approve a pending request and issue its one-time code.

    The code is returned so the admin can relay it out of band; the carrier
    also receives it on the event stream.
    """
    result = await progression.approve_request(db, request_id, admin_id=current_user["user_id"])
    return _approval_response(result)


@router.post("/checkpoint-requests/{request_id}/reject", response_model=CheckpointRequestResponse)
async def reject_request(
    request_id: int = Path(..., description="Checkpoint request ID"),
    req: Optional[RejectRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    progression: TripProgressionService = Depends(get_trip_progression)
):
    """Reject a pending request. The carrier may request the checkpoint again."""
    return await progression.reject_request(
        db, request_id, admin_id=current_user["user_id"], notes=req.notes if req else None
    )


@router.post("/checkpoint-requests/{request_id}/regenerate", response_model=ApprovalResponse)
async def regenerate_code(
    request_id: int = Path(..., description="Checkpoint request ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    progression: TripProgressionService = Depends(get_trip_progression)
):
    """Replace the code of an approved request. The old code stops working."""
    result = await progression.regenerate_code(db, request_id, admin_id=current_user["user_id"])
    return _approval_response(result)
