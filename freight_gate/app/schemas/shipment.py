"""
Shipment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from freight_gate.app.models.checkpoint_enums import CheckpointState, ShipmentStatus


class ShipmentCreate(BaseModel):
    """Schema for assigning a carrier to a load."""
    load_id: int = Field(..., gt=0)
    carrier_id: int = Field(..., gt=0)
    shipper_id: Optional[int] = Field(None, gt=0, description="Shipper, if already known")


class CounterpartyUpdate(BaseModel):
    shipper_id: int = Field(..., gt=0)


class ShipmentResponse(BaseModel):
    id: int
    load_id: int
    carrier_id: int
    shipper_id: Optional[int]
    status: ShipmentStatus
    trip_start_state: CheckpointState
    route_start_state: CheckpointState
    trip_end_state: CheckpointState
    version: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ShipmentEventResponse(BaseModel):
    """Timeline entry."""
    id: int
    shipment_id: int
    action: str
    actor_id: Optional[int]
    actor_role: Optional[str]
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True
