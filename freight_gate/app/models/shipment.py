"""
Shipment database model.

One row per load-carrier assignment. The three checkpoint states live on
the row so a single read yields the full snapshot.
"""

from sqlalchemy import Column, Integer, DateTime, Enum
from sqlalchemy.sql import func
from freight_gate.app.db.session import Base
from freight_gate.app.models.checkpoint_enums import CheckpointKind, CheckpointState, ShipmentStatus


class Shipment(Base):
    """
    Shipment model.

    ``version`` is bumped on every checkpoint transition and guards the
    conditional UPDATE used for optimistic concurrency.
    """
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Assignment (loads and users live in the marketplace database)
    load_id = Column(Integer, nullable=False, index=True)
    carrier_id = Column(Integer, nullable=False, index=True)
    shipper_id = Column(Integer, nullable=True, index=True)

    status = Column(Enum(ShipmentStatus), default=ShipmentStatus.PICKUP_SCHEDULED, nullable=False, index=True)

    # Checkpoint states
    trip_start_state = Column(Enum(CheckpointState), default=CheckpointState.NOT_REQUESTED, nullable=False)
    route_start_state = Column(Enum(CheckpointState), default=CheckpointState.NOT_REQUESTED, nullable=False)
    trip_end_state = Column(Enum(CheckpointState), default=CheckpointState.NOT_REQUESTED, nullable=False)

    version = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def checkpoint_states(self) -> dict:
        return {
            CheckpointKind.TRIP_START: self.trip_start_state,
            CheckpointKind.ROUTE_START: self.route_start_state,
            CheckpointKind.TRIP_END: self.trip_end_state,
        }

    def __repr__(self):
        return f"<Shipment(id={self.id}, load_id={self.load_id}, status='{self.status.value}')>"


def state_column(kind: CheckpointKind) -> str:
    """Attribute name holding the state of a checkpoint kind."""
    return f"{CheckpointKind(kind).value}_state"
