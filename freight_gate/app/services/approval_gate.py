"""
Approval gate.

Read surface that clients poll. Translates each checkpoint's explicit state
into the flags the carrier app renders, for all three checkpoints in one
call. No side effects: every mutation goes through the progression service.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.exceptions import ResourceNotFoundError
from freight_gate.app.models.checkpoint_enums import (
    CHECKPOINT_ORDER,
    CheckpointKind,
    CheckpointState,
    OneTimeCodeStatus,
    ShipmentStatus,
)
from freight_gate.app.models.one_time_code import OneTimeCode
from freight_gate.app.models.shipment import Shipment


@dataclass
class CheckpointView:
    state: CheckpointState
    requested: bool
    approved: bool  # Code issued, awaiting entry; never true once verified
    verified: bool
    expires_at: Optional[datetime] = None


@dataclass
class CheckpointSnapshot:
    shipment_id: int
    status: ShipmentStatus
    version: int
    checkpoints: Dict[CheckpointKind, CheckpointView]

    def __getitem__(self, kind) -> CheckpointView:
        return self.checkpoints[CheckpointKind(kind)]


def derive_view(state: CheckpointState, expires_at: Optional[datetime] = None) -> CheckpointView:
    state = CheckpointState(state)
    return CheckpointView(
        state=state,
        requested=state != CheckpointState.NOT_REQUESTED,
        approved=state == CheckpointState.APPROVED,
        verified=state == CheckpointState.VERIFIED,
        expires_at=expires_at if state == CheckpointState.APPROVED else None,
    )


class ApprovalGate:

    @staticmethod
    async def get_snapshot(db: AsyncSession, shipment_id: int) -> CheckpointSnapshot:
        """
        Full three-checkpoint snapshot for a shipment.

        Raises:
            ResourceNotFoundError: unknown shipment
        """
        result = await db.execute(
            select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
        )
        shipment = result.scalar_one_or_none()
        if shipment is None:
            raise ResourceNotFoundError("Shipment", shipment_id)

        # Expiry of the awaiting-entry codes, one query for all kinds
        codes = await db.execute(
            select(OneTimeCode.kind, OneTimeCode.expires_at).where(
                OneTimeCode.shipment_id == shipment_id,
                OneTimeCode.status == OneTimeCodeStatus.ACTIVE
            )
        )
        expiries = {kind: expires_at for kind, expires_at in codes.all()}

        states = shipment.checkpoint_states()
        return CheckpointSnapshot(
            shipment_id=shipment.id,
            status=shipment.status,
            version=shipment.version,
            checkpoints={
                kind: derive_view(states[kind], expiries.get(kind))
                for kind in CHECKPOINT_ORDER
            },
        )
