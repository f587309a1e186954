"""
Custom exceptions and error handlers for consistent error responses.

Every checkpoint guard violation and code validation failure is a
recoverable, caller-correctable error. The ``details`` payload tells the
caller what the current state is and what to do next.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("freight_gate.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Checkpoint state machine guards

class CheckpointError(AppException):
    """Base for checkpoint transition failures."""

    next_action: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int,
        shipment_id: int,
        kind: str,
        state: Optional[str] = None,
        **extra: Any
    ):
        details = {"shipment_id": shipment_id, "checkpoint_kind": kind}
        if state is not None:
            details["state"] = state
        if self.next_action:
            details["next_action"] = self.next_action
        details.update(extra)
        super().__init__(message=message, error_code=error_code, status_code=status_code, details=details)


class OutOfOrderError(CheckpointError):
    """Prerequisite checkpoint has not been verified yet."""

    def __init__(self, shipment_id: int, kind: str, prerequisite: str, prerequisite_state: str):
        super().__init__(
            message=f"Cannot progress {kind} before {prerequisite} is verified",
            error_code="ERR_CHECKPOINT_ORDER",
            status_code=status.HTTP_409_CONFLICT,
            shipment_id=shipment_id,
            kind=kind,
            prerequisite=prerequisite,
            prerequisite_state=prerequisite_state,
        )


class AlreadyRequestedError(CheckpointError):
    """Checkpoint has already left NOT_REQUESTED."""

    next_action = "poll_snapshot"

    def __init__(self, shipment_id: int, kind: str, state: str):
        super().__init__(
            message=f"{kind} has already been requested (current state: {state})",
            error_code="ERR_CHECKPOINT_REQUESTED",
            status_code=status.HTTP_409_CONFLICT,
            shipment_id=shipment_id,
            kind=kind,
            state=state,
        )


class NotPendingError(CheckpointError):
    """Approval or rejection attempted on a checkpoint that is not PENDING."""

    def __init__(self, shipment_id: int, kind: str, state: str):
        super().__init__(
            message=f"{kind} is not awaiting approval (current state: {state})",
            error_code="ERR_CHECKPOINT_NOT_PENDING",
            status_code=status.HTTP_409_CONFLICT,
            shipment_id=shipment_id,
            kind=kind,
            state=state,
        )


class NotApprovedError(CheckpointError):
    """Code submitted for a checkpoint that is not APPROVED."""

    def __init__(self, shipment_id: int, kind: str, state: str):
        super().__init__(
            message=f"{kind} has no approved code awaiting entry (current state: {state})",
            error_code="ERR_CHECKPOINT_NOT_APPROVED",
            status_code=status.HTTP_409_CONFLICT,
            shipment_id=shipment_id,
            kind=kind,
            state=state,
        )


# One-time code validation

class InvalidCodeError(CheckpointError):
    """Submitted code does not match the active code."""

    next_action = "retry_code"

    def __init__(self, shipment_id: int, kind: str, attempts_remaining: int):
        super().__init__(
            message="Invalid OTP code",
            error_code="ERR_OTP_INVALID",
            status_code=status.HTTP_400_BAD_REQUEST,
            shipment_id=shipment_id,
            kind=kind,
            attempts_remaining=attempts_remaining,
        )


class CodeExpiredError(CheckpointError):
    """Active code is past its expiry; a fresh request cycle is needed."""

    next_action = "request_checkpoint"

    def __init__(self, shipment_id: int, kind: str, expires_at: Any = None):
        super().__init__(
            message="OTP has expired, request approval again",
            error_code="ERR_OTP_EXPIRED",
            status_code=status.HTTP_410_GONE,
            shipment_id=shipment_id,
            kind=kind,
            expires_at=expires_at.isoformat() if expires_at is not None else None,
        )


class NoActiveCodeError(CheckpointError):
    """No unconsumed, unexpired code exists for the checkpoint."""

    def __init__(self, shipment_id: int, kind: str):
        super().__init__(
            message="No active OTP for this checkpoint",
            error_code="ERR_OTP_NONE_ACTIVE",
            status_code=status.HTTP_400_BAD_REQUEST,
            shipment_id=shipment_id,
            kind=kind,
        )


class MaxAttemptsExceededError(CheckpointError):
    """The active code's attempt budget is spent."""

    next_action = "await_regenerated_code"

    def __init__(self, shipment_id: int, kind: str, max_attempts: int):
        super().__init__(
            message="Maximum OTP attempts exceeded",
            error_code="ERR_OTP_ATTEMPTS",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            shipment_id=shipment_id,
            kind=kind,
            max_attempts=max_attempts,
        )


class InvalidRequestStateError(AppException):
    """Admin queue action on a request that has already been processed."""

    def __init__(self, request_id: int, status_value: str, expected: str):
        super().__init__(
            message=f"Checkpoint request {request_id} is {status_value}, expected {expected}",
            error_code="ERR_REQUEST_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"request_id": request_id, "status": status_value, "expected": expected}
        )


class ConcurrentModificationError(AppException):
    """Shipment kept changing under the caller; safe to retry."""

    def __init__(self, shipment_id: int):
        super().__init__(
            message=f"Shipment {shipment_id} was modified concurrently, retry the request",
            error_code="ERR_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"shipment_id": shipment_id, "next_action": "poll_snapshot"}
        )


class RatingNotReadyError(AppException):
    """Rating submitted before the counterparty is known or without an obligation."""

    def __init__(self, shipment_id: int, reason: str):
        super().__init__(
            message=f"Rating for shipment {shipment_id} cannot be submitted: {reason}",
            error_code="ERR_RATING_NOT_READY",
            status_code=status.HTTP_409_CONFLICT,
            details={"shipment_id": shipment_id, "reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
