"""
Carrier Rating API Endpoints.

After trip_end is verified the carrier owes a rating of the shipper. The
obligation is listed here until it is submitted or dismissed.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from freight_gate.app.db.session import get_db
from freight_gate.app.core.guards import require_carrier, OwnershipGuard
from freight_gate.app.models.checkpoint_enums import ObligationClearReason
from freight_gate.app.schemas.rating import (
    RatingSubmit, RatingResponse, RatingObligationResponse
)
from freight_gate.app.services.obligation_tracker import RatingObligationTracker, get_obligation_tracker
from freight_gate.app.services.shipment_service import ShipmentService

router = APIRouter(prefix="/carrier", tags=["Carrier - Ratings"])

ownership_guard = OwnershipGuard()


@router.get("/rating-obligations", response_model=List[RatingObligationResponse])
async def list_rating_obligations(
    current_user: dict = Depends(require_carrier),
    db: AsyncSession = Depends(get_db),
    tracker: RatingObligationTracker = Depends(get_obligation_tracker)
):
    """
    Open rating obligations for the current carrier.

    ``prompt_ready`` stays false until the shipper is known; clients keep
    the prompt hidden until then.
    """
    views = await tracker.pending_for_carrier(db, current_user["user_id"])
    # Newly resolved counterparties are cached on the obligation rows
    await db.commit()
    return views


@router.post("/shipments/{shipment_id}/rating", response_model=RatingResponse)
async def submit_rating(
    req: RatingSubmit,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_carrier),
    db: AsyncSession = Depends(get_db),
    tracker: RatingObligationTracker = Depends(get_obligation_tracker)
):
    """Rate the shipper of a delivered shipment and clear the obligation."""
    shipment = await ShipmentService.get_shipment_or_404(db, shipment_id)
    ownership_guard.enforce(shipment.carrier_id, current_user, "shipment")

    rating = await tracker.submit_rating(
        db, shipment_id, current_user["user_id"], score=req.score, review=req.review
    )
    await db.commit()
    return rating


@router.post("/shipments/{shipment_id}/rating/dismiss")
async def dismiss_rating(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_carrier),
    db: AsyncSession = Depends(get_db),
    tracker: RatingObligationTracker = Depends(get_obligation_tracker)
):
    """Skip the rating. Dismissing twice is a no-op."""
    shipment = await ShipmentService.get_shipment_or_404(db, shipment_id)
    ownership_guard.enforce(shipment.carrier_id, current_user, "shipment")

    cleared = await tracker.clear(
        db, shipment_id, ObligationClearReason.DISMISSED, actor_id=current_user["user_id"]
    )
    await db.commit()
    return {"status": "success", "cleared": cleared}
