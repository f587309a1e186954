"""
Trip progression service tests.

Drive the request -> approve -> verify cycle for each checkpoint directly
against the service layer.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import ADMIN_ID, CARRIER_ID, OTHER_CARRIER_ID, T0
from freight_gate.app.core.config import settings
from freight_gate.app.core.exceptions import (
    AlreadyRequestedError,
    CodeExpiredError,
    InsufficientPermissionsError,
    InvalidCodeError,
    InvalidRequestStateError,
    MaxAttemptsExceededError,
    NoActiveCodeError,
    NotApprovedError,
    NotPendingError,
    OutOfOrderError,
    ResourceNotFoundError,
)
from freight_gate.app.models.checkpoint_enums import (
    CHECKPOINT_ORDER,
    CheckpointKind,
    CheckpointRequestStatus,
    CheckpointState,
    ShipmentStatus,
)
from freight_gate.app.models.checkpoint_request import CheckpointRequest
from freight_gate.app.models.notification import Notification, NotificationType
from freight_gate.app.services.approval_gate import ApprovalGate
from freight_gate.app.services.audit import AuditAction, get_timeline
from freight_gate.app.services.event_fanout import ADMIN_TOPIC, TripEventType, shipment_topic
from freight_gate.app.services.trip_progression import list_requests, list_requests_for_shipment


async def pass_checkpoint(progression, db, shipment_id, kind, now=T0):
    request = await progression.request_checkpoint(db, shipment_id, kind, carrier_id=CARRIER_ID, now=now)
    result = await progression.approve_request(db, request.id, admin_id=ADMIN_ID, now=now)
    return await progression.verify_checkpoint(db, shipment_id, kind, result.code.code, carrier_id=CARRIER_ID, now=now)


@pytest.mark.asyncio
async def test_trip_start_scenario(db_session, shipment, progression, mocker):
    """Request, approve with code 482913, verify, then the replay fails."""
    sid = shipment.id
    mocker.patch("freight_gate.app.services.code_service.generate_code", return_value="482913")

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=T0)
    assert request.status == CheckpointRequestStatus.PENDING

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].requested
    assert not snapshot["trip_start"].approved

    result = await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID, now=T0)
    assert result.code.code == "482913"
    assert result.request.status == CheckpointRequestStatus.APPROVED

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].approved
    assert snapshot["trip_start"].expires_at is not None

    verified = await progression.verify_checkpoint(
        db_session, sid, CheckpointKind.TRIP_START, "482913", carrier_id=CARRIER_ID, now=T0 + timedelta(minutes=3)
    )
    assert verified.status == ShipmentStatus.TRIP_STARTED
    assert verified.started_at is not None

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].verified
    assert not snapshot["trip_start"].approved

    # route_start is now requestable
    await progression.request_checkpoint(db_session, sid, CheckpointKind.ROUTE_START, carrier_id=CARRIER_ID)

    with pytest.raises(NoActiveCodeError):
        await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "482913", carrier_id=CARRIER_ID)


@pytest.mark.asyncio
async def test_full_trip_reaches_delivered(db_session, shipment, progression):
    sid = shipment.id
    expected = [ShipmentStatus.TRIP_STARTED, ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED]

    for kind, status in zip(CHECKPOINT_ORDER, expected):
        verified = await pass_checkpoint(progression, db_session, sid, kind)
        assert verified.status == status

    assert verified.completed_at is not None
    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert all(view.verified for view in snapshot.checkpoints.values())
    assert snapshot.version == 9


@pytest.mark.asyncio
async def test_expired_code_requires_fresh_cycle(db_session, shipment, progression, fanout):
    """Issued at T, submitted at T+11min: expired; request + approve again succeeds."""
    sid = shipment.id
    carrier_events = await fanout.subscribe_carrier(CARRIER_ID)

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=T0)
    first = await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID, now=T0)
    first_code, first_request_id = first.code.code, first.request.id

    with pytest.raises(CodeExpiredError) as exc_info:
        await progression.verify_checkpoint(
            db_session, sid, CheckpointKind.TRIP_START, first_code,
            carrier_id=CARRIER_ID, now=T0 + timedelta(minutes=11)
        )
    assert exc_info.value.status_code == 410
    assert exc_info.value.details["next_action"] == "request_checkpoint"

    # Expiry was committed even though the call failed
    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].state == CheckpointState.NOT_REQUESTED
    expired_request = await db_session.get(CheckpointRequest, first_request_id, populate_existing=True)
    assert expired_request.status == CheckpointRequestStatus.EXPIRED

    approved_event = await carrier_events.get(timeout=1)
    expired_event = await carrier_events.get(timeout=1)
    assert approved_event["type"] == TripEventType.APPROVED
    assert expired_event["type"] == TripEventType.EXPIRED

    # The expired code stays dead in the new cycle
    later = T0 + timedelta(minutes=12)
    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=later)
    second = await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID, now=later)
    if second.code.code != first_code:
        with pytest.raises(InvalidCodeError):
            await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, first_code, carrier_id=CARRIER_ID, now=later)

    verified = await progression.verify_checkpoint(
        db_session, sid, CheckpointKind.TRIP_START, second.code.code, carrier_id=CARRIER_ID, now=later
    )
    assert verified.status == ShipmentStatus.TRIP_STARTED


@pytest.mark.asyncio
async def test_route_start_out_of_order(db_session, shipment, progression):
    sid = shipment.id
    with pytest.raises(OutOfOrderError):
        await progression.request_checkpoint(db_session, sid, CheckpointKind.ROUTE_START, carrier_id=CARRIER_ID)

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID)

    # Approved is not enough, trip_start must be verified
    with pytest.raises(OutOfOrderError):
        await progression.request_checkpoint(db_session, sid, CheckpointKind.ROUTE_START, carrier_id=CARRIER_ID)

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["route_start"].state == CheckpointState.NOT_REQUESTED


@pytest.mark.asyncio
async def test_duplicate_request_is_rejected(db_session, shipment, progression):
    sid = shipment.id
    await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)

    with pytest.raises(AlreadyRequestedError):
        await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)

    requests = await list_requests_for_shipment(db_session, sid)
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_verify_before_approval(db_session, shipment, progression):
    sid = shipment.id
    with pytest.raises(NotApprovedError):
        await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "123456", carrier_id=CARRIER_ID)

    await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    with pytest.raises(NotApprovedError):
        await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "123456", carrier_id=CARRIER_ID)


@pytest.mark.asyncio
async def test_approve_requires_pending(db_session, shipment, progression):
    with pytest.raises(NotPendingError):
        await progression.approve_checkpoint(db_session, shipment.id, CheckpointKind.TRIP_START, admin_id=ADMIN_ID)


@pytest.mark.asyncio
async def test_other_carrier_cannot_progress(db_session, shipment, progression):
    sid = shipment.id
    with pytest.raises(InsufficientPermissionsError):
        await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=OTHER_CARRIER_ID)

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].state == CheckpointState.NOT_REQUESTED


@pytest.mark.asyncio
async def test_unknown_shipment(db_session, progression):
    with pytest.raises(ResourceNotFoundError):
        await progression.request_checkpoint(db_session, 9999, CheckpointKind.TRIP_START)


@pytest.mark.asyncio
async def test_wrong_code_keeps_checkpoint_approved(db_session, shipment, progression):
    sid = shipment.id
    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=T0)
    result = await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID, now=T0)
    wrong = "000000" if result.code.code != "000000" else "111111"

    with pytest.raises(InvalidCodeError) as exc_info:
        await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, wrong, carrier_id=CARRIER_ID, now=T0)
    assert exc_info.value.details["attempts_remaining"] == settings.otp_max_attempts - 1

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].approved

    timeline = await get_timeline(db_session, sid, action=AuditAction.OTP_FAILED)
    assert len(timeline) == 1


@pytest.mark.asyncio
async def test_reject_returns_checkpoint_to_not_requested(db_session, shipment, progression):
    sid = shipment.id
    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    request_id = request.id

    rejected = await progression.reject_request(db_session, request_id, admin_id=ADMIN_ID, notes="Truck not at dock")
    assert rejected.status == CheckpointRequestStatus.REJECTED
    assert rejected.notes == "Truck not at dock"

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].state == CheckpointState.NOT_REQUESTED

    # Processed requests cannot be acted on again
    with pytest.raises(InvalidRequestStateError):
        await progression.approve_request(db_session, request_id, admin_id=ADMIN_ID)

    again = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    assert again.id != request_id

    result = await db_session.execute(
        select(Notification).where(Notification.user_id == CARRIER_ID, Notification.type == NotificationType.WARNING)
    )
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_regenerate_supersedes_previous_code(db_session, shipment, progression, mocker):
    sid = shipment.id
    mocker.patch("freight_gate.app.services.code_service.generate_code", side_effect=["111111", "222222"])

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=T0)
    request_id = request.id
    await progression.approve_request(db_session, request_id, admin_id=ADMIN_ID, now=T0)

    regenerated = await progression.regenerate_code(db_session, request_id, admin_id=ADMIN_ID, now=T0 + timedelta(minutes=1))
    assert regenerated.code.code == "222222"
    assert regenerated.request.id == request_id

    with pytest.raises(InvalidCodeError):
        await progression.verify_checkpoint(
            db_session, sid, CheckpointKind.TRIP_START, "111111", carrier_id=CARRIER_ID, now=T0 + timedelta(minutes=2)
        )

    verified = await progression.verify_checkpoint(
        db_session, sid, CheckpointKind.TRIP_START, "222222", carrier_id=CARRIER_ID, now=T0 + timedelta(minutes=2)
    )
    assert verified.status == ShipmentStatus.TRIP_STARTED


@pytest.mark.asyncio
async def test_max_attempts_then_regenerate(db_session, shipment, progression, mocker):
    sid = shipment.id
    mocker.patch("freight_gate.app.services.code_service.generate_code", side_effect=["482913", "654321"])

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID, now=T0)
    request_id = request.id
    await progression.approve_request(db_session, request_id, admin_id=ADMIN_ID, now=T0)

    for _ in range(settings.otp_max_attempts):
        with pytest.raises(InvalidCodeError):
            await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "000000", carrier_id=CARRIER_ID, now=T0)

    with pytest.raises(MaxAttemptsExceededError) as exc_info:
        await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "482913", carrier_id=CARRIER_ID, now=T0)
    assert exc_info.value.status_code == 429

    snapshot = await ApprovalGate.get_snapshot(db_session, sid)
    assert snapshot["trip_start"].approved

    await progression.regenerate_code(db_session, request_id, admin_id=ADMIN_ID, now=T0)
    verified = await progression.verify_checkpoint(db_session, sid, CheckpointKind.TRIP_START, "654321", carrier_id=CARRIER_ID, now=T0)
    assert verified.status == ShipmentStatus.TRIP_STARTED


@pytest.mark.asyncio
async def test_regenerate_requires_approved_request(db_session, shipment, progression):
    request = await progression.request_checkpoint(db_session, shipment.id, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    with pytest.raises(InvalidRequestStateError):
        await progression.regenerate_code(db_session, request.id, admin_id=ADMIN_ID)


@pytest.mark.asyncio
async def test_admin_queue_lists_pending_oldest_first(db_session, progression):
    from freight_gate.app.services.shipment_service import ShipmentService

    first = await ShipmentService.create_shipment(db_session, load_id=1, carrier_id=CARRIER_ID)
    second = await ShipmentService.create_shipment(db_session, load_id=2, carrier_id=CARRIER_ID)
    first_id, second_id = first.id, second.id
    await db_session.commit()

    await progression.request_checkpoint(db_session, second_id, CheckpointKind.TRIP_START, now=T0)
    await progression.request_checkpoint(db_session, first_id, CheckpointKind.TRIP_START, now=T0 + timedelta(seconds=5))

    pending = await list_requests(db_session, status=CheckpointRequestStatus.PENDING)
    assert [r.shipment_id for r in pending] == [second_id, first_id]

    await progression.approve_request(db_session, pending[0].id, admin_id=ADMIN_ID)
    pending = await list_requests(db_session, status=CheckpointRequestStatus.PENDING)
    assert [r.shipment_id for r in pending] == [first_id]


@pytest.mark.asyncio
async def test_events_route_to_admins_and_carrier(db_session, shipment, progression, fanout, mocker):
    sid = shipment.id
    mocker.patch("freight_gate.app.services.code_service.generate_code", return_value="482913")
    admin_events = await fanout.subscribe([ADMIN_TOPIC])
    carrier_events = await fanout.subscribe_carrier(CARRIER_ID)
    watchers = await fanout.subscribe([shipment_topic(sid)])

    request = await progression.request_checkpoint(db_session, sid, CheckpointKind.TRIP_START, carrier_id=CARRIER_ID)
    queued = await admin_events.get(timeout=1)
    assert queued["type"] == TripEventType.REQUESTED
    assert queued["request_id"] == request.id

    result = await progression.approve_request(db_session, request.id, admin_id=ADMIN_ID)
    pushed = await carrier_events.get(timeout=1)
    assert pushed["type"] == TripEventType.APPROVED
    assert pushed["code"] == result.code.code
    assert pushed["state"] == "APPROVED"

    # Shipment watchers see the state change without the code
    await watchers.get(timeout=1)
    approved = await watchers.get(timeout=1)
    assert approved["type"] == TripEventType.APPROVED
    assert "code" not in approved

    # Code never lands in the inbox or the timeline
    notifications = await db_session.execute(select(Notification).where(Notification.user_id == CARRIER_ID))
    for notification in notifications.scalars().all():
        assert result.code.code not in notification.message
        assert "code" not in (notification.metadata_payload or {})
    for entry in await get_timeline(db_session, sid):
        assert result.code.code not in str(entry.meta_data)


@pytest.mark.asyncio
async def test_timeline_records_each_step(db_session, shipment, progression):
    sid = shipment.id
    await pass_checkpoint(progression, db_session, sid, CheckpointKind.TRIP_START)

    actions = [entry.action for entry in await get_timeline(db_session, sid)]
    assert actions == [
        AuditAction.SHIPMENT_CREATED,
        AuditAction.CHECKPOINT_REQUESTED,
        AuditAction.CHECKPOINT_APPROVED,
        AuditAction.CHECKPOINT_VERIFIED,
    ]
