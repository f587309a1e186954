"""
Trip progression service.

Moves a shipment through trip_start, route_start and trip_end. Each
checkpoint is requested by the carrier, approved by an admin (which mints a
one-time code) and verified by the carrier entering that code.

Every transition is one transaction run under the shipment's lock:
    load shipment -> check rules -> conditional version UPDATE -> commit
and events are published only after the commit succeeds.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.clock import utcnow
from freight_gate.app.core.exceptions import (
    CodeExpiredError,
    ConcurrentModificationError,
    InsufficientPermissionsError,
    InvalidCodeError,
    InvalidRequestStateError,
    NoActiveCodeError,
    ResourceNotFoundError,
)
from freight_gate.app.domain.progression.rules import (
    FINAL_CHECKPOINT,
    STATUS_ON_VERIFY,
    CheckpointAction,
    check_transition,
)
from freight_gate.app.models.checkpoint_enums import (
    CheckpointKind,
    CheckpointRequestStatus,
    CheckpointState,
)
from freight_gate.app.models.checkpoint_request import CheckpointRequest
from freight_gate.app.models.notification import NotificationType
from freight_gate.app.models.one_time_code import OneTimeCode
from freight_gate.app.models.shipment import Shipment, state_column
from freight_gate.app.services.audit import AuditAction, log_event
from freight_gate.app.services.code_service import CodeService
from freight_gate.app.services.event_fanout import EventFanout, TripEvent, TripEventType, event_fanout
from freight_gate.app.services.notification_service import NotificationService
from freight_gate.app.services.obligation_tracker import RatingObligationTracker, rating_obligations
from freight_gate.app.services.shipment_locking import (
    ShipmentLockRegistry,
    StaleShipmentError,
    commit_transition,
    shipment_locks,
)

logger = logging.getLogger("freight_gate.progression")

CHECKPOINT_TITLES = {
    CheckpointKind.TRIP_START: "Trip Start",
    CheckpointKind.ROUTE_START: "Route Start",
    CheckpointKind.TRIP_END: "Trip End",
}


@dataclass
class ApprovalResult:
    request: CheckpointRequest
    code: OneTimeCode


@dataclass
class _Outcome:
    value: object
    events: List[TripEvent] = field(default_factory=list)


class TripProgressionService:

    max_retries = 3

    def __init__(
        self,
        fanout: EventFanout = None,
        locks: ShipmentLockRegistry = None,
        obligations: RatingObligationTracker = None
    ):
        self.fanout = fanout or event_fanout
        self.locks = locks or shipment_locks
        self.obligations = obligations or rating_obligations

    # Plumbing

    async def _load(self, db: AsyncSession, shipment_id: int) -> Shipment:
        result = await db.execute(
            select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
        )
        shipment = result.scalar_one_or_none()
        if shipment is None:
            raise ResourceNotFoundError("Shipment", shipment_id)
        return shipment

    async def _run(
        self,
        db: AsyncSession,
        shipment_id: int,
        step: Callable[[Shipment], Awaitable[_Outcome]]
    ):
        """
        Run ``step`` as one locked, committed transition and publish its events.

        A version conflict means another worker committed first; the step is
        re-run against fresh state, which usually turns into a guard error.
        """
        async with self.locks.hold(shipment_id):
            for attempt in range(1, self.max_retries + 1):
                try:
                    shipment = await self._load(db, shipment_id)
                    outcome = await step(shipment)
                    await db.commit()
                except StaleShipmentError:
                    await db.rollback()
                    logger.warning("Version conflict on shipment %s (attempt %s)", shipment_id, attempt)
                    continue
                except Exception:
                    await db.rollback()
                    raise

                for event in outcome.events:
                    await self.fanout.publish(event)
                return outcome.value

        raise ConcurrentModificationError(shipment_id)

    @staticmethod
    async def _latest_request(
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        status: CheckpointRequestStatus
    ) -> Optional[CheckpointRequest]:
        result = await db.execute(
            select(CheckpointRequest).where(
                CheckpointRequest.shipment_id == shipment_id,
                CheckpointRequest.kind == kind,
                CheckpointRequest.status == status
            ).order_by(CheckpointRequest.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_request(db: AsyncSession, request_id: int) -> CheckpointRequest:
        result = await db.execute(
            select(CheckpointRequest).where(CheckpointRequest.id == request_id).execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFoundError("Checkpoint request", request_id)
        return request

    @staticmethod
    def _check_owner(shipment: Shipment, carrier_id: Optional[int]) -> None:
        if carrier_id is not None and shipment.carrier_id != carrier_id:
            raise InsufficientPermissionsError(
                "This shipment is not assigned to you",
                details={"shipment_id": shipment.id}
            )

    # Carrier operations

    async def request_checkpoint(
        self,
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        carrier_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CheckpointRequest:
        """
        Ask for admin approval of a checkpoint.

        Returns immediately with the review-queue record; approval happens
        later and out of band.

        Raises:
            OutOfOrderError: previous checkpoint not verified
            AlreadyRequestedError: checkpoint not in NOT_REQUESTED
        """
        kind = CheckpointKind(kind)

        async def step(shipment: Shipment) -> _Outcome:
            self._check_owner(shipment, carrier_id)
            target = check_transition(shipment.id, shipment.checkpoint_states(), kind, CheckpointAction.REQUEST)
            await commit_transition(db, shipment, {state_column(kind): target})

            request = CheckpointRequest(
                shipment_id=shipment.id,
                carrier_id=shipment.carrier_id,
                kind=kind,
                status=CheckpointRequestStatus.PENDING,
                requested_at=now or utcnow(),
            )
            db.add(request)
            await db.flush()

            await log_event(
                db=db,
                shipment_id=shipment.id,
                action=AuditAction.CHECKPOINT_REQUESTED,
                actor_id=carrier_id,
                actor_role="CARRIER",
                metadata={"checkpoint_kind": kind.value, "request_id": request.id}
            )
            logger.info("Shipment %s %s requested (request %s)", shipment.id, kind.value, request.id)

            event = TripEvent(
                type=TripEventType.REQUESTED,
                shipment_id=shipment.id,
                carrier_id=shipment.carrier_id,
                checkpoint_kind=kind.value,
                state=target.value,
                request_id=request.id,
            )
            return _Outcome(request, [event])

        return await self._run(db, shipment_id, step)

    async def verify_checkpoint(
        self,
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        submitted_code: str,
        carrier_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Shipment:
        """
        Verify a checkpoint with the code the carrier received.

        On success the checkpoint is VERIFIED, the shipment status advances
        and, for trip_end, the rating obligation is armed.

        Failed attempts and expiry are committed before the error is raised:
        a wrong code uses up an attempt, and an expired code resets the
        checkpoint to NOT_REQUESTED so the carrier must request it again.

        Raises:
            NotApprovedError, InvalidCodeError, CodeExpiredError,
            NoActiveCodeError, MaxAttemptsExceededError, OutOfOrderError
        """
        kind = CheckpointKind(kind)
        now = now or utcnow()

        async def step(shipment: Shipment) -> _Outcome:
            self._check_owner(shipment, carrier_id)
            states = shipment.checkpoint_states()
            if states[kind] == CheckpointState.VERIFIED:
                # Its code was consumed; a resubmission is a replay
                raise NoActiveCodeError(shipment.id, kind.value)
            target = check_transition(shipment.id, states, kind, CheckpointAction.VERIFY)
            request = await self._latest_request(db, shipment.id, kind, CheckpointRequestStatus.APPROVED)

            try:
                await CodeService.validate(db, shipment.id, kind, submitted_code, now=now)
            except CodeExpiredError:
                await self._expire(db, shipment, kind, request)
                raise
            except InvalidCodeError as exc:
                await log_event(
                    db=db,
                    shipment_id=shipment.id,
                    action=AuditAction.OTP_FAILED,
                    actor_id=carrier_id,
                    actor_role="CARRIER",
                    metadata={
                        "checkpoint_kind": kind.value,
                        "attempts_remaining": exc.details.get("attempts_remaining")
                    }
                )
                await db.commit()
                raise

            values = {state_column(kind): target, "status": STATUS_ON_VERIFY[kind]}
            if kind == CheckpointKind.TRIP_START:
                values["started_at"] = now
            if kind == FINAL_CHECKPOINT:
                values["completed_at"] = now
            await commit_transition(db, shipment, values)

            if request is not None:
                request.status = CheckpointRequestStatus.VERIFIED
                await db.flush()

            await log_event(
                db=db,
                shipment_id=shipment.id,
                action=AuditAction.CHECKPOINT_VERIFIED,
                actor_id=carrier_id,
                actor_role="CARRIER",
                metadata={"checkpoint_kind": kind.value, "status": shipment.status.value}
            )

            if kind == FINAL_CHECKPOINT:
                await self.obligations.arm(db, shipment, now=now)
                await NotificationService.create_notification(
                    db=db,
                    user_id=shipment.carrier_id,
                    title="Rate your shipper",
                    message=f"Delivery confirmed for shipment {shipment.id}. Please rate the shipper.",
                    type=NotificationType.RATING_REQUEST,
                    metadata={"shipment_id": shipment.id}
                )

            logger.info("Shipment %s %s verified, status %s", shipment.id, kind.value, shipment.status.value)
            event = TripEvent(
                type=TripEventType.VERIFIED,
                shipment_id=shipment.id,
                carrier_id=shipment.carrier_id,
                checkpoint_kind=kind.value,
                state=target.value,
                request_id=request.id if request else None,
            )
            return _Outcome(shipment, [event])

        return await self._run(db, shipment_id, step)

    async def _expire(
        self,
        db: AsyncSession,
        shipment: Shipment,
        kind: CheckpointKind,
        request: Optional[CheckpointRequest]
    ) -> None:
        """Reset an APPROVED checkpoint whose code lapsed, then commit and notify."""
        target = check_transition(shipment.id, shipment.checkpoint_states(), kind, CheckpointAction.EXPIRE)
        await commit_transition(db, shipment, {state_column(kind): target})
        if request is not None:
            request.status = CheckpointRequestStatus.EXPIRED
        await log_event(
            db=db,
            shipment_id=shipment.id,
            action=AuditAction.OTP_EXPIRED,
            metadata={"checkpoint_kind": kind.value, "request_id": request.id if request else None}
        )
        await db.commit()
        logger.info("Shipment %s %s code expired, checkpoint reset", shipment.id, kind.value)

        await self.fanout.publish(TripEvent(
            type=TripEventType.EXPIRED,
            shipment_id=shipment.id,
            carrier_id=shipment.carrier_id,
            checkpoint_kind=kind.value,
            state=target.value,
            request_id=request.id if request else None,
        ))

    # Admin operations

    async def approve_checkpoint(
        self,
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        admin_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ApprovalResult:
        """
        Approve a pending checkpoint and issue its one-time code.

        The caller must already have established admin authority.

        Raises:
            NotPendingError: checkpoint not in PENDING
        """
        kind = CheckpointKind(kind)

        async def step(shipment: Shipment) -> _Outcome:
            target = check_transition(shipment.id, shipment.checkpoint_states(), kind, CheckpointAction.APPROVE)
            code = await CodeService.issue(db, shipment.id, kind, issued_by=admin_id, now=now)
            await commit_transition(db, shipment, {state_column(kind): target})

            request = await self._latest_request(db, shipment.id, kind, CheckpointRequestStatus.PENDING)
            if request is None:
                request = CheckpointRequest(
                    shipment_id=shipment.id,
                    carrier_id=shipment.carrier_id,
                    kind=kind,
                    requested_at=code.issued_at,
                )
                db.add(request)
            request.status = CheckpointRequestStatus.APPROVED
            request.processed_at = code.issued_at
            request.processed_by = admin_id
            request.code_id = code.id
            await db.flush()

            await self._announce_code(db, shipment, kind, request, code, admin_id, AuditAction.CHECKPOINT_APPROVED)
            return _Outcome(ApprovalResult(request, code), [self._approved_event(shipment, kind, request, code)])

        return await self._run(db, shipment_id, step)

    async def approve_request(
        self,
        db: AsyncSession,
        request_id: int,
        admin_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ApprovalResult:
        """Admin-queue entry point: approve by request id."""
        request = await self._get_request(db, request_id)
        if request.status != CheckpointRequestStatus.PENDING:
            raise InvalidRequestStateError(request.id, request.status.value, CheckpointRequestStatus.PENDING.value)
        shipment_id, kind = request.shipment_id, request.kind
        return await self.approve_checkpoint(db, shipment_id, kind, admin_id=admin_id, now=now)

    async def reject_request(
        self,
        db: AsyncSession,
        request_id: int,
        admin_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> CheckpointRequest:
        """
        Reject a pending request; the checkpoint returns to NOT_REQUESTED
        and the carrier may request again.
        """
        request = await self._get_request(db, request_id)
        shipment_id = request.shipment_id

        async def step(shipment: Shipment) -> _Outcome:
            current = await self._get_request(db, request_id)
            if current.status != CheckpointRequestStatus.PENDING:
                raise InvalidRequestStateError(current.id, current.status.value, CheckpointRequestStatus.PENDING.value)
            kind = current.kind
            target = check_transition(shipment.id, shipment.checkpoint_states(), kind, CheckpointAction.REJECT)
            await commit_transition(db, shipment, {state_column(kind): target})

            current.status = CheckpointRequestStatus.REJECTED
            current.processed_at = utcnow()
            current.processed_by = admin_id
            current.notes = notes
            await db.flush()

            await NotificationService.create_notification(
                db=db,
                user_id=shipment.carrier_id,
                title=f"{CHECKPOINT_TITLES[kind]} OTP request rejected",
                message=notes or "Your request was rejected. You can request again.",
                type=NotificationType.WARNING,
                metadata={"shipment_id": shipment.id, "checkpoint_kind": kind.value, "request_id": current.id}
            )
            await log_event(
                db=db,
                shipment_id=shipment.id,
                action=AuditAction.CHECKPOINT_REJECTED,
                actor_id=admin_id,
                actor_role="ADMIN",
                metadata={"checkpoint_kind": kind.value, "request_id": current.id, "notes": notes}
            )
            event = TripEvent(
                type=TripEventType.REJECTED,
                shipment_id=shipment.id,
                carrier_id=shipment.carrier_id,
                checkpoint_kind=kind.value,
                state=target.value,
                request_id=current.id,
            )
            return _Outcome(current, [event])

        return await self._run(db, shipment_id, step)

    async def regenerate_code(
        self,
        db: AsyncSession,
        request_id: int,
        admin_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ApprovalResult:
        """
        Issue a replacement code for an approved request that is still
        awaiting entry. The previous code stops validating immediately.
        """
        request = await self._get_request(db, request_id)
        shipment_id = request.shipment_id

        async def step(shipment: Shipment) -> _Outcome:
            current = await self._get_request(db, request_id)
            if current.status != CheckpointRequestStatus.APPROVED:
                raise InvalidRequestStateError(current.id, current.status.value, CheckpointRequestStatus.APPROVED.value)
            kind = current.kind
            check_transition(shipment.id, shipment.checkpoint_states(), kind, CheckpointAction.REGENERATE)

            code = await CodeService.issue(db, shipment.id, kind, issued_by=admin_id, now=now)
            await commit_transition(db, shipment, {})
            current.code_id = code.id
            current.processed_at = code.issued_at
            current.processed_by = admin_id
            await db.flush()

            await self._announce_code(db, shipment, kind, current, code, admin_id, AuditAction.OTP_REGENERATED)
            return _Outcome(ApprovalResult(current, code), [self._approved_event(shipment, kind, current, code)])

        return await self._run(db, shipment_id, step)

    async def _announce_code(
        self,
        db: AsyncSession,
        shipment: Shipment,
        kind: CheckpointKind,
        request: CheckpointRequest,
        code: OneTimeCode,
        admin_id: Optional[int],
        action: str
    ) -> None:
        # Inbox entry and timeline never carry the code value
        await NotificationService.create_notification(
            db=db,
            user_id=shipment.carrier_id,
            title=f"{CHECKPOINT_TITLES[kind]} OTP approved",
            message="Your OTP has been issued. Enter it before it expires.",
            type=NotificationType.CHECKPOINT_UPDATE,
            metadata={
                "shipment_id": shipment.id,
                "checkpoint_kind": kind.value,
                "request_id": request.id,
                "expires_at": code.expires_at.isoformat(),
            }
        )
        await log_event(
            db=db,
            shipment_id=shipment.id,
            action=action,
            actor_id=admin_id,
            actor_role="ADMIN",
            metadata={
                "checkpoint_kind": kind.value,
                "request_id": request.id,
                "code_id": code.id,
                "expires_at": code.expires_at.isoformat(),
            }
        )
        logger.info("Shipment %s %s code issued (request %s)", shipment.id, kind.value, request.id)

    @staticmethod
    def _approved_event(
        shipment: Shipment,
        kind: CheckpointKind,
        request: CheckpointRequest,
        code: OneTimeCode
    ) -> TripEvent:
        return TripEvent(
            type=TripEventType.APPROVED,
            shipment_id=shipment.id,
            carrier_id=shipment.carrier_id,
            checkpoint_kind=kind.value,
            state=shipment.checkpoint_states()[kind].value,
            request_id=request.id,
            code=code.code,
            expires_at=code.expires_at,
        )


# Queue reads

async def list_requests(
    db: AsyncSession,
    status: Optional[CheckpointRequestStatus] = None,
    limit: int = 100
) -> List[CheckpointRequest]:
    """Admin queue. Pending requests come oldest first, history newest first."""
    query = select(CheckpointRequest)
    if status is not None:
        query = query.where(CheckpointRequest.status == status)
    if status == CheckpointRequestStatus.PENDING:
        query = query.order_by(CheckpointRequest.requested_at, CheckpointRequest.id)
    else:
        query = query.order_by(CheckpointRequest.id.desc())
    result = await db.execute(query.limit(limit))
    return result.scalars().all()


async def list_requests_for_shipment(db: AsyncSession, shipment_id: int) -> List[CheckpointRequest]:
    result = await db.execute(
        select(CheckpointRequest)
        .where(CheckpointRequest.shipment_id == shipment_id)
        .order_by(CheckpointRequest.id.desc())
    )
    return result.scalars().all()


trip_progression = TripProgressionService()


def get_trip_progression() -> TripProgressionService:
    """FastAPI dependency for the process-wide progression service."""
    return trip_progression
