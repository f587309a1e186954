"""
Shipment Event Database Model.

Append-only timeline of checkpoint activity per shipment, used by the
admin back-office and for audit.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from freight_gate.app.db.session import Base


class ShipmentEvent(Base):
    """
    Timeline entry.

    Events logged:
    - SHIPMENT_CREATED
    - CHECKPOINT_REQUESTED / CHECKPOINT_APPROVED / CHECKPOINT_REJECTED
    - OTP_REGENERATED / OTP_FAILED / OTP_EXPIRED
    - CHECKPOINT_VERIFIED
    - RATING_OBLIGATION_ARMED / RATING_SUBMITTED / RATING_DISMISSED
    """
    __tablename__ = "shipment_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)

    # What happened
    action = Column(String(100), nullable=False, index=True)

    # Who did it (None for system actions)
    actor_id = Column(Integer, nullable=True)
    actor_role = Column(String(20), nullable=True)

    # Additional context (JSON for flexibility). Never holds code values.
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<ShipmentEvent(id={self.id}, shipment={self.shipment_id}, action='{self.action}')>"
