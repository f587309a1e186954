"""
Event fan-out service.

Pushes checkpoint state changes to subscribed sessions. Delivery is
best-effort: a carrier who is not connected simply misses the push and
picks the change up from the snapshot poll. Publishing never raises into
the caller, because by the time an event is published the transition has
already been committed.

Topics:
    carrier:{id}   events for one carrier, including issued codes
    shipment:{id}  state changes for one shipment, codes stripped
    admins         new requests awaiting review
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from freight_gate.app.core.clock import utcnow
from freight_gate.app.core.config import settings

logger = logging.getLogger("freight_gate.events")

ADMIN_TOPIC = "admins"


def carrier_topic(carrier_id: int) -> str:
    return f"carrier:{carrier_id}"


def shipment_topic(shipment_id: int) -> str:
    return f"shipment:{shipment_id}"


class TripEventType:
    REQUESTED = "checkpoint_requested"
    APPROVED = "otp_approved"
    REJECTED = "checkpoint_rejected"
    VERIFIED = "checkpoint_verified"
    EXPIRED = "otp_expired"


@dataclass
class TripEvent:
    type: str
    shipment_id: int
    carrier_id: int
    checkpoint_kind: str
    state: str
    request_id: Optional[int] = None
    code: Optional[str] = None
    expires_at: Optional[datetime] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self, include_code: bool = False) -> Dict[str, Any]:
        payload = {
            "type": self.type,
            "shipment_id": self.shipment_id,
            "carrier_id": self.carrier_id,
            "checkpoint_kind": self.checkpoint_kind,
            "state": self.state,
            "request_id": self.request_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "timestamp": self.occurred_at.isoformat(),
        }
        if include_code and self.code is not None:
            payload["code"] = self.code
        return payload

    def routes(self) -> List[tuple]:
        """(topic, payload) pairs this event is delivered to."""
        if self.type == TripEventType.REQUESTED:
            return [
                (ADMIN_TOPIC, self.to_payload()),
                (shipment_topic(self.shipment_id), self.to_payload()),
            ]
        return [
            (carrier_topic(self.carrier_id), self.to_payload(include_code=True)),
            (shipment_topic(self.shipment_id), self.to_payload()),
        ]


# Brokers

class MemorySubscription:
    """Queue-backed subscription to one or more topics."""

    def __init__(self, broker: "InMemoryBroker", topics: Iterable[str], maxsize: int = 100):
        self.broker = broker
        self.topics = list(topics)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, payload: Dict[str, Any]) -> None:
        if self.queue.full():
            # Oldest event is the least useful one; the poll path covers it
            self.queue.get_nowait()
            logger.warning("Subscription queue full on %s, dropped oldest event", self.topics)
        self.queue.put_nowait(payload)

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next payload, or None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.broker.unsubscribe(self)


class InMemoryBroker:
    """Single-process broker. Also what the test suite runs against."""

    def __init__(self):
        self._subscriptions: Dict[str, Set[MemorySubscription]] = {}

    async def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        receivers = list(self._subscriptions.get(topic, ()))
        for subscription in receivers:
            subscription.deliver(payload)
        return len(receivers)

    async def subscribe(self, topics: Iterable[str]) -> MemorySubscription:
        subscription = MemorySubscription(self, topics)
        for topic in subscription.topics:
            self._subscriptions.setdefault(topic, set()).add(subscription)
        return subscription

    async def unsubscribe(self, subscription: MemorySubscription) -> None:
        for topic in subscription.topics:
            subscribers = self._subscriptions.get(topic)
            if subscribers is None:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    async def close(self) -> None:
        self._subscriptions.clear()


class RedisSubscription:
    """Redis pub/sub subscription; payloads are JSON strings on the wire."""

    def __init__(self, pubsub, channels: List[str]):
        self.pubsub = pubsub
        self.channels = channels
        self.closed = False

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout or 1.0)
        if message is None or message.get("type") != "message":
            return None
        data = message["data"]
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.pubsub.unsubscribe(*self.channels)
            await self.pubsub.aclose()


class RedisBroker:
    """Multi-worker broker on Redis pub/sub."""

    def __init__(self, client, prefix: str = None):
        self.client = client
        self.prefix = prefix or settings.event_channel_prefix

    def channel(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        return await self.client.publish(self.channel(topic), json.dumps(payload, default=str))

    async def subscribe(self, topics: Iterable[str]) -> RedisSubscription:
        channels = [self.channel(topic) for topic in topics]
        pubsub = self.client.pubsub()
        await pubsub.subscribe(*channels)
        return RedisSubscription(pubsub, channels)

    async def close(self) -> None:
        await self.client.aclose()


# Fan-out

class EventFanout:

    def __init__(self, broker):
        self.broker = broker

    async def publish(self, event: TripEvent) -> int:
        """
        Deliver ``event`` to every topic it routes to.

        Must only be called after the transition has been committed.
        Returns the number of receivers reached; broker failures are logged
        and count as zero.
        """
        delivered = 0
        for topic, payload in event.routes():
            try:
                delivered += await self.broker.publish(topic, payload)
            except Exception as exc:
                logger.warning(
                    "Publish of %s to %s failed: %s: %s",
                    event.type, topic, type(exc).__name__, exc
                )
        logger.info(
            "Published %s for shipment %s %s to %s receiver(s)",
            event.type, event.shipment_id, event.checkpoint_kind, delivered
        )
        return delivered

    async def subscribe(self, topics: Iterable[str]):
        return await self.broker.subscribe(topics)

    async def subscribe_carrier(self, carrier_id: int):
        return await self.broker.subscribe([carrier_topic(carrier_id)])

    async def close(self) -> None:
        await self.broker.close()


def build_broker():
    if settings.event_broker == "redis":
        from freight_gate.app.core.redis_client import get_redis
        return RedisBroker(get_redis())
    return InMemoryBroker()


event_fanout = EventFanout(build_broker())


def get_event_fanout() -> EventFanout:
    """FastAPI dependency for the process-wide fan-out."""
    return event_fanout
