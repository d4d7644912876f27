"""Room membership and broadcast management for websocket clients."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, Mapping, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .events import ServerEvent, build_event
from .rooms import RoomKey
from .sessions import SessionRegistry
from .transport import (
    BrokerConfig,
    ROOMS_TOPIC,
    RedisBackplane,
    Subscription,
    TransportUnavailableError,
)


logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send *data* to a single websocket, returning False if it is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class RoomManager:
    """Track which websockets belong to which rooms and fan events out to them.

    Joining and leaving are idempotent. Delivery reaches the members present
    when the broadcast runs; nothing is queued for later joiners. A socket
    whose send fails is dropped from every room. When a backplane is
    configured, each broadcast is also published so that other instances
    deliver it to their own members.
    """

    def __init__(self, transport: RedisBackplane | None = None, *, node_id: str = "local") -> None:
        self._rooms: Dict[RoomKey, Set[WebSocket]] = defaultdict(set)
        self._memberships: Dict[WebSocket, Set[RoomKey]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._transport = transport
        self._node_id = node_id
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    async def join(self, websocket: WebSocket, room: RoomKey) -> bool:
        async with self._lock:
            members = self._rooms[room]
            if websocket in members:
                return False
            members.add(websocket)
            self._memberships[websocket].add(room)
        realtime_connections.labels(room.kind.value).inc()
        return True

    async def leave(self, websocket: WebSocket, room: RoomKey) -> bool:
        async with self._lock:
            members = self._rooms.get(room)
            if not members or websocket not in members:
                return False
            members.discard(websocket)
            if not members:
                self._rooms.pop(room, None)
            joined = self._memberships.get(websocket)
            if joined is not None:
                joined.discard(room)
                if not joined:
                    self._memberships.pop(websocket, None)
        realtime_connections.labels(room.kind.value).dec()
        return True

    async def leave_all(self, websocket: WebSocket) -> list[RoomKey]:
        async with self._lock:
            rooms = list(self._memberships.pop(websocket, set()))
            for room in rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(websocket)
                if not members:
                    self._rooms.pop(room, None)
        for room in rooms:
            realtime_connections.labels(room.kind.value).dec()
        return rooms

    def members(self, room: RoomKey) -> set[WebSocket]:
        return set(self._rooms.get(room, set()))

    def rooms_for(self, websocket: WebSocket) -> set[RoomKey]:
        return set(self._memberships.get(websocket, set()))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def broadcast(
        self,
        room: RoomKey,
        event: ServerEvent | str,
        data: Mapping[str, Any] | None = None,
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        """Deliver *event* to every member of *room* and relay it to other nodes.

        Returns the number of local members that received the frame.
        """

        frame = build_event(event, data)
        delivered = await self._deliver_local(room, frame, exclude=exclude)
        await self._publish(room, frame)
        return delivered

    async def broadcast_except(
        self,
        room: RoomKey,
        event: ServerEvent | str,
        data: Mapping[str, Any] | None,
        excluded: WebSocket,
    ) -> int:
        return await self.broadcast(room, event, data, exclude={excluded})

    async def emit_to_user(
        self, user_id: str, event: ServerEvent | str, data: Mapping[str, Any] | None = None
    ) -> int:
        return await self.broadcast(RoomKey.personal(user_id), event, data)

    async def _deliver_local(
        self,
        room: RoomKey,
        frame: dict[str, Any],
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        connections = self.members(room)
        exclude_set = set(exclude or [])
        delivered = 0
        stale: list[WebSocket] = []
        for connection in connections:
            if connection in exclude_set:
                continue
            if await safe_send_json(connection, frame):
                delivered += 1
            else:
                stale.append(connection)
        for connection in stale:
            await self.leave_all(connection)
        realtime_events_total.labels(room.kind.value, "out", frame["type"]).inc()
        return delivered

    # ------------------------------------------------------------------
    # Backplane
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._transport is None or not self._transport.enabled:
            return

        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            frame = message.get("frame")
            if not isinstance(frame, dict) or "type" not in frame:
                return
            try:
                room = RoomKey.parse(str(message.get("room", "")))
            except ValueError:
                logger.warning("Discarded relayed event with malformed room key")
                return
            await self._deliver_local(room, frame)
            realtime_events_total.labels(room.kind.value, "in", frame["type"]).inc()

        try:
            self._subscription = await self._transport.subscribe(ROOMS_TOPIC, handle)
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; room events will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None
            return
        realtime_subscriptions.labels(ROOMS_TOPIC, "redis").inc()

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            realtime_subscriptions.labels(ROOMS_TOPIC, "redis").dec()
            self._subscription = None

    async def _publish(self, room: RoomKey, frame: dict[str, Any]) -> None:
        if self._transport is None or not self._transport.enabled:
            return
        try:
            await self._transport.publish(
                ROOMS_TOPIC,
                {"origin": self._node_id, "room": room.channel, "frame": frame},
            )
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while relaying %s to %s; operating in local-only mode",
                    frame["type"],
                    room.channel,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels(ROOMS_TOPIC, "redis", "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels(ROOMS_TOPIC, "redis", "error").inc()
            logger.exception("Unexpected error while relaying %s to %s", frame["type"], room.channel)
        else:
            self._publish_warning_logged = False


# ---------------------------------------------------------------------------
# Process-wide singletons
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisBackplane(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        prefix=settings.realtime_namespace,
        node_id=_node_id,
    )
)

session_registry = SessionRegistry()
room_manager = RoomManager(transport, node_id=_node_id)


async def startup_realtime() -> None:
    try:
        await transport.start()
    except TransportUnavailableError:
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    await room_manager.start()


async def shutdown_realtime() -> None:
    await room_manager.stop()
    await transport.stop()


def get_room_manager() -> RoomManager:
    return room_manager


def get_session_registry() -> SessionRegistry:
    return session_registry


__all__ = [
    "RoomManager",
    "safe_send_json",
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_session_registry",
]
