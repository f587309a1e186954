"""
Event fan-out tests.
"""

import json
from datetime import timedelta

import pytest

from conftest import T0
from freight_gate.app.services.event_fanout import (
    ADMIN_TOPIC,
    EventFanout,
    InMemoryBroker,
    MemorySubscription,
    RedisBroker,
    TripEvent,
    TripEventType,
    carrier_topic,
    shipment_topic,
)


def approved_event(**overrides):
    fields = dict(
        type=TripEventType.APPROVED,
        shipment_id=10,
        carrier_id=42,
        checkpoint_kind="trip_start",
        state="APPROVED",
        request_id=3,
        code="482913",
        expires_at=T0 + timedelta(minutes=10),
        occurred_at=T0,
    )
    fields.update(overrides)
    return TripEvent(**fields)


def test_code_only_travels_to_the_carrier():
    routes = dict(approved_event().routes())
    assert routes[carrier_topic(42)]["code"] == "482913"
    assert "code" not in routes[shipment_topic(10)]
    assert ADMIN_TOPIC not in routes


def test_requests_go_to_admin_queue():
    event = approved_event(type=TripEventType.REQUESTED, state="PENDING", code=None, expires_at=None)
    topics = [topic for topic, _ in event.routes()]
    assert topics == [ADMIN_TOPIC, shipment_topic(10)]


def test_payload_is_json_ready():
    payload = approved_event().to_payload(include_code=True)
    assert json.loads(json.dumps(payload)) == payload
    assert payload["expires_at"] == (T0 + timedelta(minutes=10)).isoformat()


@pytest.mark.asyncio
async def test_publish_reaches_subscribers(fanout):
    carrier = await fanout.subscribe_carrier(42)
    other_carrier = await fanout.subscribe_carrier(43)

    delivered = await fanout.publish(approved_event())
    assert delivered == 1

    payload = await carrier.get(timeout=1)
    assert payload["code"] == "482913"
    assert await other_carrier.get(timeout=0.05) is None


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_fine(fanout):
    assert await fanout.publish(approved_event()) == 0


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving():
    broker = InMemoryBroker()
    fanout = EventFanout(broker)
    subscription = await fanout.subscribe_carrier(42)
    assert broker.subscriber_count(carrier_topic(42)) == 1

    await subscription.close()
    await subscription.close()
    assert broker.subscriber_count(carrier_topic(42)) == 0
    assert await fanout.publish(approved_event()) == 0


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest():
    broker = InMemoryBroker()
    subscription = MemorySubscription(broker, ["t"], maxsize=2)
    for n in range(3):
        subscription.deliver({"n": n})

    assert (await subscription.get(timeout=1))["n"] == 1
    assert (await subscription.get(timeout=1))["n"] == 2


@pytest.mark.asyncio
async def test_redis_broker_prefixes_channels(mocker):
    client = mocker.AsyncMock()
    client.publish.return_value = 1
    broker = RedisBroker(client, prefix="freight-gate")

    delivered = await EventFanout(broker).publish(approved_event())
    assert delivered == 2

    channels = [call.args[0] for call in client.publish.await_args_list]
    assert channels == ["freight-gate:carrier:42", "freight-gate:shipment:10"]
    carrier_payload = json.loads(client.publish.await_args_list[0].args[1])
    assert carrier_payload["code"] == "482913"
