"""
Checkpoint-related enumerations.
"""

import enum


class CheckpointKind(str, enum.Enum):
    """The three sequential trip milestones, in order."""
    TRIP_START = "trip_start"
    ROUTE_START = "route_start"
    TRIP_END = "trip_end"


CHECKPOINT_ORDER = (CheckpointKind.TRIP_START, CheckpointKind.ROUTE_START, CheckpointKind.TRIP_END)


class CheckpointState(str, enum.Enum):
    """Per-checkpoint state. Exactly one holds at any time."""
    NOT_REQUESTED = "NOT_REQUESTED"
    PENDING = "PENDING"  # Carrier asked, awaiting admin
    APPROVED = "APPROVED"  # Code issued, awaiting entry
    VERIFIED = "VERIFIED"  # Code accepted


class ShipmentStatus(str, enum.Enum):
    """Overall shipment status, advanced by checkpoint verification."""
    PICKUP_SCHEDULED = "pickup_scheduled"
    TRIP_STARTED = "trip_started"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class CheckpointRequestStatus(str, enum.Enum):
    """Admin review queue record status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"  # Code lapsed before entry
    VERIFIED = "VERIFIED"


class OneTimeCodeStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"


class ObligationClearReason(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    DISMISSED = "DISMISSED"
