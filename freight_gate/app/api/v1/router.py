"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from freight_gate.app.api.v1.endpoints import (
    carrier_checkpoints, shipments, admin_checkpoints,
    ratings, notifications, events
)

router = APIRouter()

# Carrier checkpoint flow
router.include_router(carrier_checkpoints.router)

# Snapshot polling
router.include_router(shipments.router)

# Admin review queue
router.include_router(admin_checkpoints.router)

# Post-delivery ratings
router.include_router(ratings.router)

# Inbox
router.include_router(notifications.router)

# Push
router.include_router(events.router)
