from __future__ import annotations

import logging

import pytest

from app.monitoring.metrics import realtime_events_total, realtime_publish_errors_total
from greconnect.realtime.managers import RoomManager
from greconnect.realtime.rooms import RoomKey
from greconnect.realtime.transport import BrokerConfig, RedisBackplane

from conftest import DummyWebSocket


class FailingRedis:
    async def publish(self, channel: str, payload: str) -> None:  # pragma: no cover - used in tests
        raise ConnectionError("boom")


@pytest.fixture(autouse=True)
def reset_metrics():
    realtime_publish_errors_total.reset()
    realtime_events_total.reset()
    yield
    realtime_publish_errors_total.reset()
    realtime_events_total.reset()


def _failing_backplane() -> RedisBackplane:
    backplane = RedisBackplane(BrokerConfig(redis_url="redis://example", node_id="node"))
    backplane._redis = FailingRedis()  # type: ignore[assignment]
    # Keep the recovery loop from starting inside the test.
    backplane._trigger_recovery = lambda reason: None  # type: ignore[method-assign]
    return backplane


@pytest.mark.anyio("asyncio")
async def test_broadcast_survives_backplane_failure(caplog):
    manager = RoomManager(_failing_backplane(), node_id="node")
    websocket = DummyWebSocket()
    room = RoomKey.conversation("abc")
    await manager.join(websocket, room)

    with caplog.at_level(logging.WARNING):
        delivered = await manager.broadcast(room, "new-message", {"id": "m1"})

    assert delivered == 1
    assert websocket.sent == [{"type": "new-message", "data": {"id": "m1"}}]
    assert any(
        record.levelno == logging.WARNING and "local-only mode" in record.getMessage()
        for record in caplog.records
    )
    assert realtime_publish_errors_total.value("rooms", "redis", "unavailable") == 1.0
    assert realtime_events_total.value("conversation", "out", "new-message") == 1.0


@pytest.mark.anyio("asyncio")
async def test_backplane_outage_is_logged_once(caplog):
    manager = RoomManager(_failing_backplane(), node_id="node")
    room = RoomKey.call("call-1")

    with caplog.at_level(logging.WARNING):
        await manager.broadcast(room, "call-ended", {"callId": "call-1"})
        await manager.broadcast(room, "call-ended", {"callId": "call-1"})

    warnings = [record for record in caplog.records if "local-only mode" in record.getMessage()]
    assert len(warnings) == 1
    assert realtime_publish_errors_total.value("rooms", "redis", "unavailable") == 2.0


@pytest.mark.anyio("asyncio")
async def test_local_only_manager_never_publishes():
    manager = RoomManager(RedisBackplane(BrokerConfig(redis_url=None)))
    websocket = DummyWebSocket()
    await manager.join(websocket, RoomKey.personal("u1"))

    await manager.emit_to_user("u1", "incoming-call", {"callId": "c"})

    assert websocket.sent == [{"type": "incoming-call", "data": {"callId": "c"}}]
    assert realtime_publish_errors_total._samples == {}
