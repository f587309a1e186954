"""
Shipper rating database model.

A carrier's post-delivery rating of the shipper who owned the load.
"""

from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from freight_gate.app.db.session import Base


class ShipperRating(Base):
    __tablename__ = "shipper_ratings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, unique=True)
    load_id = Column(Integer, nullable=False)
    carrier_id = Column(Integer, nullable=False, index=True)
    shipper_id = Column(Integer, nullable=False, index=True)

    score = Column(Integer, nullable=False)  # 1-5
    review = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ShipperRating(shipment={self.shipment_id}, shipper={self.shipper_id}, score={self.score})>"
