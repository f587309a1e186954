"""
Checkpoint Progression Rules.

Pure transition table for the three trip checkpoints. No I/O: the
progression service loads the shipment, asks these functions whether a move
is legal, and persists the result.

Per checkpoint:
    NOT_REQUESTED -> PENDING -> APPROVED -> VERIFIED

Checkpoint N+1 may only leave NOT_REQUESTED once checkpoint N is VERIFIED.
The only backward moves are resets to NOT_REQUESTED on admin rejection
(from PENDING) and on code expiry (from APPROVED).
"""

import enum
from typing import Dict, Mapping, Optional

from freight_gate.app.core.exceptions import (
    AlreadyRequestedError,
    NotApprovedError,
    NotPendingError,
    OutOfOrderError,
)
from freight_gate.app.models.checkpoint_enums import (
    CHECKPOINT_ORDER,
    CheckpointKind,
    CheckpointState,
    ShipmentStatus,
)


class CheckpointAction(str, enum.Enum):
    REQUEST = "request"
    APPROVE = "approve"
    REGENERATE = "regenerate"
    VERIFY = "verify"
    REJECT = "reject"
    EXPIRE = "expire"


# action -> (required current state, resulting state)
TRANSITIONS = {
    CheckpointAction.REQUEST: (CheckpointState.NOT_REQUESTED, CheckpointState.PENDING),
    CheckpointAction.APPROVE: (CheckpointState.PENDING, CheckpointState.APPROVED),
    CheckpointAction.REGENERATE: (CheckpointState.APPROVED, CheckpointState.APPROVED),
    CheckpointAction.VERIFY: (CheckpointState.APPROVED, CheckpointState.VERIFIED),
    CheckpointAction.REJECT: (CheckpointState.PENDING, CheckpointState.NOT_REQUESTED),
    CheckpointAction.EXPIRE: (CheckpointState.APPROVED, CheckpointState.NOT_REQUESTED),
}

STATUS_ON_VERIFY = {
    CheckpointKind.TRIP_START: ShipmentStatus.TRIP_STARTED,
    CheckpointKind.ROUTE_START: ShipmentStatus.IN_TRANSIT,
    CheckpointKind.TRIP_END: ShipmentStatus.DELIVERED,
}

FINAL_CHECKPOINT = CHECKPOINT_ORDER[-1]

States = Mapping[CheckpointKind, CheckpointState]


def prerequisite_of(kind: CheckpointKind) -> Optional[CheckpointKind]:
    """The checkpoint that must be VERIFIED before ``kind`` can progress."""
    index = CHECKPOINT_ORDER.index(CheckpointKind(kind))
    return CHECKPOINT_ORDER[index - 1] if index else None


def _check_order(shipment_id: int, states: States, kind: CheckpointKind) -> None:
    prerequisite = prerequisite_of(kind)
    if prerequisite is None:
        return
    prerequisite_state = states[prerequisite]
    if prerequisite_state != CheckpointState.VERIFIED:
        raise OutOfOrderError(shipment_id, kind.value, prerequisite.value, prerequisite_state.value)


def check_transition(shipment_id: int, states: States, kind: CheckpointKind, action: CheckpointAction) -> CheckpointState:
    """
    Validate ``action`` on ``kind`` and return the resulting state.

    Ordering is checked first, so an out-of-order request reports
    OutOfOrder even when the checkpoint itself is untouched.

    Raises:
        OutOfOrderError: prerequisite checkpoint not VERIFIED
        AlreadyRequestedError: REQUEST from any state but NOT_REQUESTED
        NotPendingError: APPROVE/REJECT from any state but PENDING
        NotApprovedError: VERIFY/REGENERATE/EXPIRE from any state but APPROVED
    """
    kind = CheckpointKind(kind)
    action = CheckpointAction(action)
    _check_order(shipment_id, states, kind)

    required, target = TRANSITIONS[action]
    current = states[kind]
    if current == required:
        return target

    if action == CheckpointAction.REQUEST:
        raise AlreadyRequestedError(shipment_id, kind.value, current.value)
    if required == CheckpointState.PENDING:
        raise NotPendingError(shipment_id, kind.value, current.value)
    raise NotApprovedError(shipment_id, kind.value, current.value)


def apply_transition(
    shipment_id: int,
    states: States,
    kind: CheckpointKind,
    action: CheckpointAction,
) -> Dict[CheckpointKind, CheckpointState]:
    """Return a new state mapping with ``action`` applied. Input is not mutated."""
    target = check_transition(shipment_id, states, kind, action)
    updated = dict(states)
    updated[CheckpointKind(kind)] = target
    return updated


def initial_states() -> Dict[CheckpointKind, CheckpointState]:
    return {kind: CheckpointState.NOT_REQUESTED for kind in CHECKPOINT_ORDER}
