from __future__ import annotations

import pytest

from greconnect.realtime.sessions import SessionRegistry

from conftest import DummyWebSocket


@pytest.mark.anyio("asyncio")
async def test_latest_connection_wins():
    registry = SessionRegistry()
    first, second = DummyWebSocket(), DummyWebSocket()

    assert await registry.register("u1", first) is None
    assert await registry.register("u1", second) is first

    assert registry.lookup("u1") is second
    assert len(registry) == 1


@pytest.mark.anyio("asyncio")
async def test_stale_connection_cannot_evict_its_replacement():
    registry = SessionRegistry()
    first, second = DummyWebSocket(), DummyWebSocket()
    await registry.register("u1", first)
    await registry.register("u1", second)

    assert await registry.unregister("u1", first) is False
    assert registry.lookup("u1") is second

    assert await registry.unregister("u1", second) is True
    assert registry.lookup("u1") is None
    assert not registry.is_online("u1")


@pytest.mark.anyio("asyncio")
async def test_unregister_without_handle_removes_entry():
    registry = SessionRegistry()
    await registry.register("u1", DummyWebSocket())

    assert await registry.unregister("u1") is True
    assert await registry.unregister("u1") is False
