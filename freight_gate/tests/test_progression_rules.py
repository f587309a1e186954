"""
Checkpoint transition table tests.

Pure rules, no database.
"""

import pytest
from hypothesis import HealthCheck, given, settings as hypothesis_settings, strategies as st

from freight_gate.app.core.exceptions import (
    AlreadyRequestedError,
    CheckpointError,
    NotApprovedError,
    NotPendingError,
    OutOfOrderError,
)
from freight_gate.app.domain.progression.rules import (
    CheckpointAction,
    apply_transition,
    check_transition,
    initial_states,
    prerequisite_of,
)
from freight_gate.app.models.checkpoint_enums import CHECKPOINT_ORDER, CheckpointKind, CheckpointState

FORWARD = [
    CheckpointState.NOT_REQUESTED,
    CheckpointState.PENDING,
    CheckpointState.APPROVED,
    CheckpointState.VERIFIED,
]
FORWARD_ACTIONS = [CheckpointAction.REQUEST, CheckpointAction.APPROVE, CheckpointAction.VERIFY]


def test_prerequisites():
    assert prerequisite_of(CheckpointKind.TRIP_START) is None
    assert prerequisite_of(CheckpointKind.ROUTE_START) == CheckpointKind.TRIP_START
    assert prerequisite_of(CheckpointKind.TRIP_END) == CheckpointKind.ROUTE_START


def test_happy_path_through_all_checkpoints():
    states = initial_states()
    for kind in CHECKPOINT_ORDER:
        for action in FORWARD_ACTIONS:
            states = apply_transition(1, states, kind, action)
    assert all(state == CheckpointState.VERIFIED for state in states.values())


def test_apply_does_not_mutate_input():
    states = initial_states()
    updated = apply_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.REQUEST)
    assert states[CheckpointKind.TRIP_START] == CheckpointState.NOT_REQUESTED
    assert updated[CheckpointKind.TRIP_START] == CheckpointState.PENDING


def test_route_start_blocked_until_trip_start_verified():
    states = initial_states()
    states[CheckpointKind.TRIP_START] = CheckpointState.APPROVED

    with pytest.raises(OutOfOrderError) as exc_info:
        check_transition(7, states, CheckpointKind.ROUTE_START, CheckpointAction.REQUEST)

    details = exc_info.value.details
    assert details["prerequisite"] == "trip_start"
    assert details["prerequisite_state"] == "APPROVED"
    assert exc_info.value.status_code == 409


def test_order_is_checked_before_own_state():
    # trip_end itself untouched, but the error names the ordering problem
    with pytest.raises(OutOfOrderError):
        check_transition(1, initial_states(), CheckpointKind.TRIP_END, CheckpointAction.APPROVE)


def test_duplicate_request_reports_current_state():
    states = initial_states()
    states[CheckpointKind.TRIP_START] = CheckpointState.PENDING

    with pytest.raises(AlreadyRequestedError) as exc_info:
        check_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.REQUEST)
    assert exc_info.value.details["state"] == "PENDING"
    assert exc_info.value.details["next_action"] == "poll_snapshot"


def test_approve_requires_pending():
    with pytest.raises(NotPendingError):
        check_transition(1, initial_states(), CheckpointKind.TRIP_START, CheckpointAction.APPROVE)


def test_verify_requires_approved():
    states = initial_states()
    states[CheckpointKind.TRIP_START] = CheckpointState.PENDING
    with pytest.raises(NotApprovedError):
        check_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.VERIFY)


def test_reject_and_expire_reset_to_not_requested():
    states = initial_states()
    states[CheckpointKind.TRIP_START] = CheckpointState.PENDING
    assert check_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.REJECT) == CheckpointState.NOT_REQUESTED

    states[CheckpointKind.TRIP_START] = CheckpointState.APPROVED
    assert check_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.EXPIRE) == CheckpointState.NOT_REQUESTED
    assert check_transition(1, states, CheckpointKind.TRIP_START, CheckpointAction.REGENERATE) == CheckpointState.APPROVED


# Autouse database fixtures are not touched by this test
@hypothesis_settings(max_examples=300, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(st.lists(
    st.tuples(st.sampled_from(list(CheckpointKind)), st.sampled_from(FORWARD_ACTIONS)),
    max_size=40
))
def test_forward_operations_never_skip_or_reverse(operations):
    """Random valid and invalid request/approve/verify sequences only ever advance one step."""
    states = initial_states()
    for kind, action in operations:
        before = dict(states)
        try:
            states = apply_transition(1, states, kind, action)
        except CheckpointError:
            assert states == before
            continue

        for other in CHECKPOINT_ORDER:
            if other != kind:
                assert states[other] == before[other]
        assert FORWARD.index(states[kind]) == FORWARD.index(before[kind]) + 1

        # Ordering holds in every reachable state
        for earlier, later in zip(CHECKPOINT_ORDER, CHECKPOINT_ORDER[1:]):
            if states[later] != CheckpointState.NOT_REQUESTED:
                assert states[earlier] == CheckpointState.VERIFIED
