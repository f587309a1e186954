"""
Rating obligation database model.

Durable "rating pending" marker armed on trip end. Being a table row, it
survives client reloads and service restarts alike.
"""

from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey
from freight_gate.app.db.session import Base
from freight_gate.app.models.checkpoint_enums import ObligationClearReason


class RatingObligation(Base):
    __tablename__ = "rating_obligations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, unique=True)
    carrier_id = Column(Integer, nullable=False, index=True)
    load_id = Column(Integer, nullable=False)

    # Shipper being rated, unknown until the directory catches up
    counterparty_id = Column(Integer, nullable=True)

    armed_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    cleared_at = Column(DateTime(timezone=True), nullable=True)
    clear_reason = Column(Enum(ObligationClearReason), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.cleared_at is None

    def __repr__(self):
        return f"<RatingObligation(shipment={self.shipment_id}, counterparty={self.counterparty_id}, open={self.is_open})>"
