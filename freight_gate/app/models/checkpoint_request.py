"""
Checkpoint request database model.

The admin review queue: one row per carrier request for a checkpoint.
"""

from sqlalchemy import Column, Integer, Text, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from freight_gate.app.db.session import Base
from freight_gate.app.models.checkpoint_enums import CheckpointKind, CheckpointRequestStatus


class CheckpointRequest(Base):
    """
    Checkpoint request model.

    Created PENDING by the carrier, processed once by an admin (approve or
    reject). ``code_id`` points at the latest code issued for it.
    """
    __tablename__ = "checkpoint_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    carrier_id = Column(Integer, nullable=False, index=True)
    kind = Column(Enum(CheckpointKind), nullable=False)

    status = Column(Enum(CheckpointRequestStatus), default=CheckpointRequestStatus.PENDING, nullable=False, index=True)

    requested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    code_id = Column(Integer, ForeignKey("one_time_codes.id"), nullable=True)

    def __repr__(self):
        return f"<CheckpointRequest(id={self.id}, shipment={self.shipment_id}, kind='{self.kind.value}', status='{self.status.value}')>"
