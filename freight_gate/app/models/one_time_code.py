"""
One-time code database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Index
from freight_gate.app.core.config import settings
from freight_gate.app.db.session import Base
from freight_gate.app.models.checkpoint_enums import CheckpointKind, OneTimeCodeStatus


class OneTimeCode(Base):
    """
    Short-lived numeric credential bound to (shipment, checkpoint kind).

    At most one ACTIVE row per pair; issuing a new code supersedes the old.
    """
    __tablename__ = "one_time_codes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False)
    kind = Column(Enum(CheckpointKind), nullable=False)

    code = Column(String(settings.otp_code_length), nullable=False)
    status = Column(Enum(OneTimeCodeStatus), default=OneTimeCodeStatus.ACTIVE, nullable=False)

    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, nullable=False)

    issued_by = Column(Integer, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_one_time_codes_pair", "shipment_id", "kind", "status"),
    )

    def __repr__(self):
        # Never render the code value
        return f"<OneTimeCode(id={self.id}, shipment={self.shipment_id}, kind='{self.kind.value}', status='{self.status.value}')>"
