"""
Checkpoint Event Stream.

WebSocket push of checkpoint changes. Carriers receive events for their
own shipments (approved codes included); admins receive new requests for
the review queue. The stream only hints that something changed: clients
that miss a message recover by polling the snapshot.
"""

import asyncio
import json
import logging
from contextlib import suppress

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from freight_gate.app.core.dependencies import user_from_token
from freight_gate.app.models.enums import UserRole
from freight_gate.app.services.event_fanout import (
    ADMIN_TOPIC,
    EventFanout,
    carrier_topic,
    get_event_fanout,
)

logger = logging.getLogger("freight_gate.ws")

router = APIRouter(tags=["Events"])


def topics_for(user: dict) -> list:
    role = user.get("role")
    if role == UserRole.ADMIN.value:
        return [ADMIN_TOPIC]
    if role == UserRole.CARRIER.value:
        return [carrier_topic(user["user_id"])]
    return []


@router.websocket("/ws/events")
async def event_stream(
    websocket: WebSocket,
    token: str = Query(..., description="Bearer token"),
    fanout: EventFanout = Depends(get_event_fanout)
):
    """
    Subscribe to checkpoint events.

    Client messages: ``{"type": "ping"}`` is answered with
    ``{"type": "pong"}``; anything else is ignored.
    """
    try:
        user = user_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    topics = topics_for(user)
    if not topics:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = await fanout.subscribe(topics)
    logger.info("Event stream opened for user %s on %s", user["user_id"], topics)

    async def forward():
        while True:
            payload = await subscription.get(timeout=1.0)
            if payload is not None:
                await websocket.send_json(payload)

    forwarder = asyncio.create_task(forward())
    try:
        await websocket.send_json({"type": "welcome", "topics": topics})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("Event stream closed for user %s", user["user_id"])
    finally:
        forwarder.cancel()
        with suppress(asyncio.CancelledError):
            try:
                await forwarder
            except Exception:
                logger.exception("Event forwarder for user %s failed", user["user_id"])
        await subscription.close()
