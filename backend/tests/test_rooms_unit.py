"""Unit tests for room membership and fan-out."""

from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketDisconnect

from greconnect.realtime.managers import RoomManager
from greconnect.realtime.rooms import RoomKey, RoomKind

from conftest import DummyWebSocket


class ClosedWebSocket(DummyWebSocket):
    async def send_json(self, payload):
        raise WebSocketDisconnect(code=1006)


def test_room_keys_of_different_kinds_never_collide():
    assert RoomKey.conversation("42") != RoomKey.call("42")
    assert RoomKey.call("42") != RoomKey.personal("42")
    assert RoomKey.parse("call:42") == RoomKey.call("42")
    assert RoomKey.personal("u1").channel == "user:u1"
    assert RoomKey.parse(str(RoomKey.conversation("c9"))).kind is RoomKind.CONVERSATION


@pytest.mark.parametrize("value", ["", "conversation", "conversation:", "lobby:1"])
def test_room_key_parse_rejects_malformed_values(value):
    with pytest.raises(ValueError):
        RoomKey.parse(value)


@pytest.mark.anyio("asyncio")
async def test_join_and_leave_are_idempotent():
    manager = RoomManager()
    websocket = DummyWebSocket()
    room = RoomKey.conversation("c1")

    assert await manager.join(websocket, room) is True
    assert await manager.join(websocket, room) is False
    assert manager.members(room) == {websocket}

    assert await manager.leave(websocket, room) is True
    assert await manager.leave(websocket, room) is False
    assert manager.members(room) == set()
    assert manager.rooms_for(websocket) == set()


@pytest.mark.anyio("asyncio")
async def test_broadcast_except_skips_the_sender():
    manager = RoomManager()
    sender, other = DummyWebSocket(), DummyWebSocket()
    room = RoomKey.conversation("c1")
    await manager.join(sender, room)
    await manager.join(other, room)

    delivered = await manager.broadcast_except(room, "user-typing", {"userId": "u1"}, sender)

    assert delivered == 1
    assert sender.sent == []
    assert other.sent == [{"type": "user-typing", "data": {"userId": "u1"}}]


@pytest.mark.anyio("asyncio")
async def test_failed_send_evicts_the_socket_and_keeps_broadcasting():
    manager = RoomManager()
    broken, healthy = ClosedWebSocket(), DummyWebSocket()
    room = RoomKey.call("call-1")
    await manager.join(broken, room)
    await manager.join(healthy, room)

    delivered = await manager.broadcast(room, "call-ended", {"callId": "call-1"})

    assert delivered == 1
    assert healthy.sent[0]["type"] == "call-ended"
    assert manager.members(room) == {healthy}
    assert manager.rooms_for(broken) == set()


@pytest.mark.anyio("asyncio")
async def test_leave_all_clears_every_membership():
    manager = RoomManager()
    websocket = DummyWebSocket()
    rooms = [RoomKey.personal("u1"), RoomKey.conversation("c1"), RoomKey.call("k1")]
    for room in rooms:
        await manager.join(websocket, room)

    left = await manager.leave_all(websocket)

    assert set(left) == set(rooms)
    for room in rooms:
        assert manager.members(room) == set()
    assert await manager.broadcast(RoomKey.conversation("c1"), "new-message", {}) == 0


@pytest.mark.anyio("asyncio")
async def test_emit_to_user_targets_the_personal_room_only():
    manager = RoomManager()
    target, bystander = DummyWebSocket(), DummyWebSocket()
    await manager.join(target, RoomKey.personal("u1"))
    await manager.join(bystander, RoomKey.personal("u2"))

    await manager.emit_to_user("u1", "conversation-updated", {"id": "c1"})

    assert target.sent == [{"type": "conversation-updated", "data": {"id": "c1"}}]
    assert bystander.sent == []
