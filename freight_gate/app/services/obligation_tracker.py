"""
Post-completion rating obligation tracker.

Armed when trip_end is verified, the obligation asks the carrier to rate the
shipper. The shipper id comes from an eventually-consistent directory, so
the prompt may have to wait; every read re-checks until it resolves. The
obligation lives in the database and is only removed by an explicit clear.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.clock import utcnow
from freight_gate.app.core.exceptions import RatingNotReadyError, ResourceNotFoundError
from freight_gate.app.models.checkpoint_enums import ObligationClearReason
from freight_gate.app.models.rating_obligation import RatingObligation
from freight_gate.app.models.shipment import Shipment
from freight_gate.app.models.shipper_rating import ShipperRating
from freight_gate.app.services.audit import AuditAction, log_event
from freight_gate.app.services.counterparty_directory import CounterpartyDirectory, build_directory

logger = logging.getLogger("freight_gate.obligations")


class _CounterpartyPending:
    """Sentinel: the counterparty is not resolvable yet."""

    def __repr__(self):
        return "PENDING"

    def __bool__(self):
        return False


PENDING = _CounterpartyPending()


@dataclass
class ObligationView:
    shipment_id: int
    load_id: int
    counterparty_id: Optional[int]
    armed_at: datetime
    prompt_ready: bool


class RatingObligationTracker:

    def __init__(self, directory: CounterpartyDirectory = None):
        self.directory = directory or build_directory()

    async def get(self, db: AsyncSession, shipment_id: int) -> Optional[RatingObligation]:
        result = await db.execute(
            select(RatingObligation).where(RatingObligation.shipment_id == shipment_id)
        )
        return result.scalar_one_or_none()

    async def arm(self, db: AsyncSession, shipment: Shipment, now: Optional[datetime] = None) -> RatingObligation:
        """
        Record the rating obligation for a delivered shipment.

        Idempotent: a second call returns the existing row untouched. Runs
        in the caller's transaction (trip_end verification).
        """
        existing = await self.get(db, shipment.id)
        if existing is not None:
            return existing

        obligation = RatingObligation(
            shipment_id=shipment.id,
            carrier_id=shipment.carrier_id,
            load_id=shipment.load_id,
            counterparty_id=shipment.shipper_id,
            armed_at=now or utcnow(),
            resolved_at=(now or utcnow()) if shipment.shipper_id else None,
        )
        db.add(obligation)
        await db.flush()

        await log_event(
            db=db,
            shipment_id=shipment.id,
            action=AuditAction.RATING_OBLIGATION_ARMED,
            metadata={"counterparty_resolved": shipment.shipper_id is not None}
        )
        logger.info("Rating obligation armed for shipment %s", shipment.id)
        return obligation

    async def resolve_counterparty(self, db: AsyncSession, shipment_id: int) -> Union[int, _CounterpartyPending]:
        """
        Counterparty id for the obligation, or PENDING if still unknown.

        A resolved id is stored on the obligation so later reads skip the
        directory.
        """
        obligation = await self.get(db, shipment_id)
        if obligation is None:
            raise ResourceNotFoundError("Rating obligation", shipment_id)
        return await self._resolve(db, obligation)

    async def _resolve(self, db: AsyncSession, obligation: RatingObligation) -> Union[int, _CounterpartyPending]:
        if obligation.counterparty_id is not None:
            return obligation.counterparty_id

        shipment = await db.get(Shipment, obligation.shipment_id)
        counterparty_id = await self.directory.lookup(db, shipment)
        if counterparty_id is None:
            return PENDING

        obligation.counterparty_id = counterparty_id
        obligation.resolved_at = utcnow()
        await db.flush()
        logger.info("Counterparty %s resolved for shipment %s", counterparty_id, obligation.shipment_id)
        return counterparty_id

    async def pending_for_carrier(self, db: AsyncSession, carrier_id: int) -> List[ObligationView]:
        """Open obligations for a carrier, re-checking unresolved counterparties."""
        result = await db.execute(
            select(RatingObligation).where(
                RatingObligation.carrier_id == carrier_id,
                RatingObligation.cleared_at.is_(None)
            ).order_by(RatingObligation.armed_at)
        )
        views = []
        for obligation in result.scalars().all():
            counterparty = await self._resolve(db, obligation)
            views.append(ObligationView(
                shipment_id=obligation.shipment_id,
                load_id=obligation.load_id,
                counterparty_id=counterparty or None,
                armed_at=obligation.armed_at,
                prompt_ready=counterparty is not PENDING,
            ))
        return views

    async def clear(
        self,
        db: AsyncSession,
        shipment_id: int,
        reason: ObligationClearReason = ObligationClearReason.DISMISSED,
        actor_id: Optional[int] = None
    ) -> bool:
        """
        Clear the obligation. Returns False (no-op) if there is nothing open.
        """
        obligation = await self.get(db, shipment_id)
        if obligation is None or obligation.cleared_at is not None:
            return False

        obligation.cleared_at = utcnow()
        obligation.clear_reason = reason
        await db.flush()

        action = AuditAction.RATING_SUBMITTED if reason == ObligationClearReason.SUBMITTED else AuditAction.RATING_DISMISSED
        await log_event(
            db=db,
            shipment_id=shipment_id,
            action=action,
            actor_id=actor_id,
            actor_role="CARRIER" if actor_id is not None else None,
        )
        return True

    async def submit_rating(
        self,
        db: AsyncSession,
        shipment_id: int,
        carrier_id: int,
        score: int,
        review: Optional[str] = None
    ) -> ShipperRating:
        """
        Store the carrier's rating of the shipper and clear the obligation.

        Raises:
            RatingNotReadyError: no open obligation, or counterparty unresolved
        """
        obligation = await self.get(db, shipment_id)
        if obligation is None:
            raise RatingNotReadyError(shipment_id, "no rating obligation for this shipment")
        if obligation.cleared_at is not None:
            raise RatingNotReadyError(shipment_id, "rating obligation already cleared")

        counterparty = await self._resolve(db, obligation)
        if counterparty is PENDING:
            raise RatingNotReadyError(shipment_id, "shipper not resolved yet")

        rating = ShipperRating(
            shipment_id=shipment_id,
            load_id=obligation.load_id,
            carrier_id=carrier_id,
            shipper_id=counterparty,
            score=score,
            review=review,
        )
        db.add(rating)
        await db.flush()

        await self.clear(db, shipment_id, ObligationClearReason.SUBMITTED, actor_id=carrier_id)
        return rating


rating_obligations = RatingObligationTracker()


def get_obligation_tracker() -> RatingObligationTracker:
    """FastAPI dependency for the process-wide obligation tracker."""
    return rating_obligations
