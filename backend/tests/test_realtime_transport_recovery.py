from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from app.monitoring.metrics import realtime_transport_restarts_total
from greconnect.realtime.managers import RoomManager
from greconnect.realtime.rooms import RoomKey
from greconnect.realtime.transport import (
    BrokerConfig,
    RedisBackplane,
    TransportUnavailableError,
)

from conftest import DummyWebSocket


class FakeBroker:
    """Shared in-memory stand-in for a Redis server."""

    def __init__(self) -> None:
        self.online = True
        self.channels: dict[str, set["FakePubSub"]] = {}
        self.clients: list["FakeRedis"] = []

    def from_url(self, *_args: Any, **_kwargs: Any) -> "FakeRedis":
        client = FakeRedis(self)
        self.clients.append(client)
        return client

    def drop_connections(self) -> None:
        self.online = False
        for listeners in list(self.channels.values()):
            for pubsub in list(listeners):
                pubsub.queue.put_nowait(None)
        self.channels.clear()


class FakePubSub:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self.subscribed: set[str] = set()

    async def subscribe(self, channel: str) -> None:
        if not self.broker.online:
            raise ConnectionError("offline")
        self.subscribed.add(channel)
        self.broker.channels.setdefault(channel, set()).add(self)

    async def unsubscribe(self, channel: str) -> None:
        self.subscribed.discard(channel)
        self.broker.channels.get(channel, set()).discard(self)

    async def aclose(self) -> None:
        for channel in list(self.subscribed):
            await self.unsubscribe(channel)

    async def listen(self):
        while True:
            message = await self.queue.get()
            if message is None:
                return
            yield message


class FakeRedis:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker

    async def ping(self) -> bool:
        if not self.broker.online:
            raise ConnectionError("offline")
        return True

    async def publish(self, channel: str, payload: str) -> int:
        if not self.broker.online:
            raise ConnectionError("offline")
        listeners = list(self.broker.channels.get(channel, set()))
        for pubsub in listeners:
            pubsub.queue.put_nowait({"type": "message", "data": payload})
        return len(listeners)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self.broker)

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def broker(monkeypatch) -> FakeBroker:
    fake = FakeBroker()
    monkeypatch.setattr(
        "greconnect.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=fake.from_url),
    )
    monkeypatch.setattr("greconnect.realtime.transport._RECOVERY_BASE_DELAY", 0.01)
    monkeypatch.setattr("greconnect.realtime.transport._RECOVERY_MAX_DELAY", 0.05)
    return fake


@pytest.fixture(autouse=True)
def reset_restart_metric():
    realtime_transport_restarts_total.reset()
    yield
    realtime_transport_restarts_total.reset()


async def _eventually(predicate, *, attempts: int = 50, delay: float = 0.02) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(delay)
    raise AssertionError("condition was not met in time")


@pytest.mark.anyio("asyncio")
async def test_backplane_resubscribes_after_connection_loss(broker):
    backplane = RedisBackplane(BrokerConfig(redis_url="redis://fake", prefix="test"))
    await backplane.start()

    received: list[dict[str, Any]] = []

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)

    subscription = await backplane.subscribe("rooms", handler)
    await backplane.publish("rooms", {"seq": 1})
    await _eventually(lambda: received == [{"seq": 1}])

    broker.drop_connections()
    with pytest.raises(TransportUnavailableError):
        await backplane.publish("rooms", {"seq": 2})

    broker.online = True
    await _eventually(lambda: len(broker.clients) >= 2)

    async def publish_when_ready(payload: dict[str, Any]) -> None:
        for _ in range(40):
            try:
                await backplane.publish("rooms", payload)
                return
            except TransportUnavailableError:
                await asyncio.sleep(0.02)
        raise AssertionError("backplane did not recover")

    await _eventually(lambda: "test.rooms" in broker.channels)
    await publish_when_ready({"seq": 3})
    await _eventually(lambda: received[-1:] == [{"seq": 3}])

    assert {"seq": 2} not in received
    assert sum(realtime_transport_restarts_total._samples.values()) >= 1.0

    await subscription.close()
    await backplane.stop()


@pytest.mark.anyio("asyncio")
async def test_room_events_reach_members_on_other_nodes(broker):
    first = RedisBackplane(BrokerConfig(redis_url="redis://fake", node_id="node-a"))
    second = RedisBackplane(BrokerConfig(redis_url="redis://fake", node_id="node-b"))
    await first.start()
    await second.start()
    rooms_a = RoomManager(first, node_id="node-a")
    rooms_b = RoomManager(second, node_id="node-b")
    await rooms_a.start()
    await rooms_b.start()

    local = DummyWebSocket()
    remote = DummyWebSocket()
    room = RoomKey.conversation("c1")
    await rooms_a.join(local, room)
    await rooms_b.join(remote, room)

    await rooms_a.broadcast(room, "new-message", {"id": "m1"})
    await _eventually(lambda: bool(remote.sent))

    assert local.sent == [{"type": "new-message", "data": {"id": "m1"}}]
    assert remote.sent == [{"type": "new-message", "data": {"id": "m1"}}]

    # The origin node ignores its own relayed frame.
    await asyncio.sleep(0.05)
    assert len(local.sent) == 1

    await rooms_a.stop()
    await rooms_b.stop()
    await first.stop()
    await second.stop()
