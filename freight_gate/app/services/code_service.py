"""
One-time code service.

Mints and validates the 6-digit codes that gate each checkpoint. Codes are
single-use, time-boxed and bound to (shipment, checkpoint kind). Expiry is
lazy: it is only detected when a code is submitted.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.clock import as_utc, utcnow
from freight_gate.app.core.config import settings
from freight_gate.app.core.exceptions import (
    CodeExpiredError,
    InvalidCodeError,
    MaxAttemptsExceededError,
    NoActiveCodeError,
)
from freight_gate.app.models.checkpoint_enums import CheckpointKind, OneTimeCodeStatus
from freight_gate.app.models.one_time_code import OneTimeCode

logger = logging.getLogger("freight_gate.codes")


def generate_code(length: int = None) -> str:
    """Uniformly random digit string; independent of ids and clocks."""
    length = length or settings.otp_code_length
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def is_well_formed(submitted: str, length: int = None) -> bool:
    length = length or settings.otp_code_length
    return (
        isinstance(submitted, str)
        and len(submitted) == length
        and submitted.isascii()
        and submitted.isdigit()
    )


class CodeService:

    @staticmethod
    async def get_active_code(
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind
    ) -> Optional[OneTimeCode]:
        """Most recent ACTIVE code for the pair, expired or not."""
        result = await db.execute(
            select(OneTimeCode).where(
                OneTimeCode.shipment_id == shipment_id,
                OneTimeCode.kind == kind,
                OneTimeCode.status == OneTimeCodeStatus.ACTIVE
            ).order_by(OneTimeCode.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def invalidate(
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        status: OneTimeCodeStatus = OneTimeCodeStatus.SUPERSEDED
    ) -> int:
        """Retire every ACTIVE code for the pair. Returns the number retired."""
        result = await db.execute(
            update(OneTimeCode).where(
                OneTimeCode.shipment_id == shipment_id,
                OneTimeCode.kind == kind,
                OneTimeCode.status == OneTimeCodeStatus.ACTIVE
            ).values(status=status)
        )
        return result.rowcount

    @staticmethod
    async def count_attempt(db: AsyncSession, code: OneTimeCode) -> bool:
        """
        Spend one attempt from the code's budget in a single conditional UPDATE.

        Workers that loaded the same row concurrently cannot overwrite each
        other's count. Returns False when the budget was already spent.
        """
        result = await db.execute(
            update(OneTimeCode)
            .where(
                OneTimeCode.id == code.id,
                OneTimeCode.status == OneTimeCodeStatus.ACTIVE,
                OneTimeCode.attempts < OneTimeCode.max_attempts
            )
            .values(attempts=OneTimeCode.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(code, ["attempts"])
        return result.rowcount == 1

    @staticmethod
    async def issue(
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        issued_by: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> OneTimeCode:
        """
        Issue a fresh code for a checkpoint.

        Any outstanding ACTIVE code for the same pair is superseded first, so
        only the newest code can ever validate.

        Args:
            db: Database session (caller commits)
            shipment_id: Shipment the code is bound to
            kind: Checkpoint kind the code is bound to
            issued_by: Admin who approved
            now: Issue time, defaults to the current UTC time

        Returns:
            The new OneTimeCode (flushed, has an id)
        """
        kind = CheckpointKind(kind)
        issued_at = now or utcnow()

        superseded = await CodeService.invalidate(db, shipment_id, kind)
        if superseded:
            logger.info(
                "Superseded %s active code(s) for shipment %s %s",
                superseded, shipment_id, kind.value
            )

        code = OneTimeCode(
            shipment_id=shipment_id,
            kind=kind,
            code=generate_code(),
            status=OneTimeCodeStatus.ACTIVE,
            attempts=0,
            max_attempts=settings.otp_max_attempts,
            issued_by=issued_by,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(minutes=settings.otp_validity_minutes),
        )
        db.add(code)
        await db.flush()
        return code

    @staticmethod
    async def validate(
        db: AsyncSession,
        shipment_id: int,
        kind: CheckpointKind,
        submitted: str,
        now: Optional[datetime] = None
    ) -> OneTimeCode:
        """
        Validate and consume a submitted code.

        Check order: no active code, expiry, attempt budget, match. Failed
        attempts and expiry are written to the session before raising; the
        caller decides whether to commit them.

        Raises:
            NoActiveCodeError: nothing ACTIVE for the pair (includes replays)
            CodeExpiredError: ACTIVE code is past expires_at (marked EXPIRED)
            MaxAttemptsExceededError: attempt budget already spent
            InvalidCodeError: mismatch (attempt counted)

        Returns:
            The consumed OneTimeCode
        """
        kind = CheckpointKind(kind)
        now = now or utcnow()

        code = await CodeService.get_active_code(db, shipment_id, kind)
        if code is None:
            raise NoActiveCodeError(shipment_id, kind.value)

        expires_at = as_utc(code.expires_at)
        if as_utc(now) > expires_at:
            code.status = OneTimeCodeStatus.EXPIRED
            await db.flush()
            logger.info("Code for shipment %s %s expired at %s", shipment_id, kind.value, expires_at)
            raise CodeExpiredError(shipment_id, kind.value, expires_at)

        if code.attempts >= code.max_attempts:
            raise MaxAttemptsExceededError(shipment_id, kind.value, code.max_attempts)

        candidate = submitted if is_well_formed(submitted) else ""
        if not hmac.compare_digest(candidate.encode("ascii"), code.code.encode("ascii")):
            if not await CodeService.count_attempt(db, code):
                raise MaxAttemptsExceededError(shipment_id, kind.value, code.max_attempts)
            logger.warning(
                "Invalid code for shipment %s %s (attempt %s/%s)",
                shipment_id, kind.value, code.attempts, code.max_attempts
            )
            raise InvalidCodeError(shipment_id, kind.value, max(code.max_attempts - code.attempts, 0))

        result = await db.execute(
            update(OneTimeCode)
            .where(
                OneTimeCode.id == code.id,
                OneTimeCode.status == OneTimeCodeStatus.ACTIVE,
                OneTimeCode.attempts < OneTimeCode.max_attempts
            )
            .values(status=OneTimeCodeStatus.CONSUMED, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(code, ["status", "attempts", "consumed_at"])
        if result.rowcount != 1:
            # Another worker consumed the code or spent its budget first
            if code.status != OneTimeCodeStatus.ACTIVE:
                raise NoActiveCodeError(shipment_id, kind.value)
            raise MaxAttemptsExceededError(shipment_id, kind.value, code.max_attempts)
        return code
