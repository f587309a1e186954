"""
Checkpoint Schemas.

Pydantic schemas for the carrier checkpoint flow and the admin review queue.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict
from freight_gate.app.models.checkpoint_enums import (
    CheckpointKind, CheckpointState, CheckpointRequestStatus, ShipmentStatus
)


class VerifyCodeRequest(BaseModel):
    """Code typed in by the carrier. Format is checked by the code service."""
    code: str = Field(..., min_length=1, max_length=16, description="6-digit one-time code")


class RejectRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000, description="Reason shown to the carrier")


class CheckpointViewResponse(BaseModel):
    state: CheckpointState
    requested: bool
    approved: bool
    verified: bool
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CheckpointSnapshotResponse(BaseModel):
    """All three checkpoints in one read."""
    shipment_id: int
    status: ShipmentStatus
    version: int
    checkpoints: Dict[CheckpointKind, CheckpointViewResponse]

    class Config:
        from_attributes = True


class CheckpointRequestResponse(BaseModel):
    """Review-queue record. Never carries the code value."""
    id: int
    shipment_id: int
    carrier_id: int
    kind: CheckpointKind
    status: CheckpointRequestStatus
    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[int] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ApprovalResponse(BaseModel):
    """Admin approve/regenerate result, including the issued code for out-of-band relay."""
    request: CheckpointRequestResponse
    code: str
    expires_at: datetime


class VerifyResponse(BaseModel):
    shipment_id: int
    checkpoint_kind: CheckpointKind
    status: ShipmentStatus
    verified: bool = True
