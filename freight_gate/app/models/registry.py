"""
Import every model so it is registered on ``Base.metadata``.

Imported by the application lifespan and the test suite before
``create_all``.
"""

from freight_gate.app.models.shipment import Shipment
from freight_gate.app.models.one_time_code import OneTimeCode
from freight_gate.app.models.checkpoint_request import CheckpointRequest
from freight_gate.app.models.rating_obligation import RatingObligation
from freight_gate.app.models.shipper_rating import ShipperRating
from freight_gate.app.models.shipment_event import ShipmentEvent
from freight_gate.app.models.notification import Notification

__all__ = [
    "Shipment",
    "OneTimeCode",
    "CheckpointRequest",
    "RatingObligation",
    "ShipperRating",
    "ShipmentEvent",
    "Notification",
]
