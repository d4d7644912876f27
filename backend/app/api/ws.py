"""WebSocket endpoint for realtime chat and call signaling."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError as PayloadValidationError

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.database import get_db_session
from app.models import User
from app.schemas import MessageCreate
from app.services import messages as message_service
from app.services import signaling
from app.services.conversations import get_conversation_for
from greconnect.errors import ForbiddenError, GreConnectError, NotFoundError, ValidationError
from greconnect.realtime import (
    RoomKey,
    get_room_manager,
    get_session_registry,
    safe_send_json,
)
from greconnect.realtime.events import (
    ClientEvent,
    ServerEvent,
    build_error,
    build_event,
    parse_client_event,
)

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

rooms = get_room_manager()
sessions = get_session_registry()

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or build_event(ServerEvent.PING)
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


@dataclass(slots=True)
class _Connection:
    websocket: WebSocket
    user_id: str
    username: str

    @property
    def profile(self) -> dict[str, str]:
        return {"id": self.user_id, "username": self.username}


def _require(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{key}' is required")
    return value


async def _send_error(websocket: WebSocket, code: str, message: str) -> None:
    await safe_send_json(websocket, build_error(code, message))


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


async def _on_ping(conn: _Connection, data: dict[str, Any]) -> None:
    await safe_send_json(conn.websocket, build_event(ServerEvent.PONG))


async def _on_pong(conn: _Connection, data: dict[str, Any]) -> None:
    return None


async def _on_join_conversation(conn: _Connection, data: dict[str, Any]) -> None:
    conversation_id = _require(data, "conversationId")
    with get_db_session() as db:
        get_conversation_for(db, conversation_id, conn.user_id)
    await rooms.join(conn.websocket, RoomKey.conversation(conversation_id))


async def _on_leave_conversation(conn: _Connection, data: dict[str, Any]) -> None:
    conversation_id = _require(data, "conversationId")
    await rooms.leave(conn.websocket, RoomKey.conversation(conversation_id))


async def _on_send_message(conn: _Connection, data: dict[str, Any]) -> None:
    try:
        payload = MessageCreate.model_validate(data)
    except PayloadValidationError as exc:
        raise ValidationError(f"Invalid message payload: {exc.errors()[0]['msg']}") from exc
    with get_db_session() as db:
        sender = db.get(User, conn.user_id)
        if sender is None:
            raise NotFoundError("User not found")
        await message_service.send_message(db, sender, payload)


async def _typing(conn: _Connection, data: dict[str, Any], event: ServerEvent) -> None:
    conversation_id = _require(data, "conversationId")
    room = RoomKey.conversation(conversation_id)
    if room not in rooms.rooms_for(conn.websocket):
        raise ForbiddenError("Join the conversation before sending typing updates")
    await rooms.broadcast_except(
        room,
        event,
        {"conversationId": conversation_id, "userId": conn.user_id, "username": conn.username},
        conn.websocket,
    )


async def _on_typing_start(conn: _Connection, data: dict[str, Any]) -> None:
    await _typing(conn, data, ServerEvent.USER_TYPING)


async def _on_typing_stop(conn: _Connection, data: dict[str, Any]) -> None:
    await _typing(conn, data, ServerEvent.USER_STOPPED_TYPING)


async def _on_message_read(conn: _Connection, data: dict[str, Any]) -> None:
    message_id = _require(data, "messageId")
    conversation_id = _require(data, "conversationId")
    with get_db_session() as db:
        await message_service.mark_one_as_read(
            db, conn.user_id, message_id, conversation_id, conn.websocket
        )


async def _on_join_call(conn: _Connection, data: dict[str, Any]) -> None:
    await rooms.join(conn.websocket, RoomKey.call(_require(data, "callId")))


async def _on_leave_call(conn: _Connection, data: dict[str, Any]) -> None:
    await rooms.leave(conn.websocket, RoomKey.call(_require(data, "callId")))


async def _on_call_initiate(conn: _Connection, data: dict[str, Any]) -> None:
    await signaling.relay_call_initiate(conn.profile, data)


async def _on_call_accept(conn: _Connection, data: dict[str, Any]) -> None:
    await signaling.relay_call_accept(conn.profile, data)


async def _on_call_reject(conn: _Connection, data: dict[str, Any]) -> None:
    await signaling.relay_call_reject(conn.profile, data)


async def _on_call_end(conn: _Connection, data: dict[str, Any]) -> None:
    await signaling.relay_call_end(conn.profile, data)


Handler = Callable[[_Connection, Dict[str, Any]], Awaitable[None]]

HANDLERS: Dict[ClientEvent, Handler] = {
    ClientEvent.PING: _on_ping,
    ClientEvent.PONG: _on_pong,
    ClientEvent.JOIN_CONVERSATION: _on_join_conversation,
    ClientEvent.LEAVE_CONVERSATION: _on_leave_conversation,
    ClientEvent.SEND_MESSAGE: _on_send_message,
    ClientEvent.TYPING_START: _on_typing_start,
    ClientEvent.TYPING_STOP: _on_typing_stop,
    ClientEvent.MESSAGE_READ: _on_message_read,
    ClientEvent.JOIN_CALL: _on_join_call,
    ClientEvent.LEAVE_CALL: _on_leave_call,
    ClientEvent.CALL_INITIATE: _on_call_initiate,
    ClientEvent.CALL_ACCEPT: _on_call_accept,
    ClientEvent.CALL_REJECT: _on_call_reject,
    ClientEvent.CALL_END: _on_call_end,
}


async def _handle_frame(conn: _Connection, raw_message: str) -> None:
    try:
        frame = json.loads(raw_message)
    except json.JSONDecodeError:
        await _send_error(conn.websocket, "invalid_format", "Invalid message format")
        return

    try:
        event, data = parse_client_event(frame)
    except ValueError as exc:
        await _send_error(conn.websocket, "invalid_event", str(exc))
        return

    try:
        await HANDLERS[event](conn, data)
    except GreConnectError as exc:
        await _send_error(conn.websocket, exc.code, exc.message)
    except Exception:
        logger.exception("Failed to handle %s from user %s", event.value, conn.user_id)
        await _send_error(conn.websocket, "internal_error", "Internal server error")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Single realtime connection per client for chat and call events."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    conn = _Connection(websocket=websocket, user_id=user.id, username=user.username)

    await websocket.accept()
    replaced = await sessions.register(conn.user_id, websocket)
    if replaced is not None:
        logger.debug("User %s reconnected; newest connection takes over", conn.user_id)
    await rooms.join(websocket, RoomKey.personal(conn.user_id))

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await _handle_frame(conn, raw_message)
    finally:
        await rooms.leave_all(websocket)
        await sessions.unregister(conn.user_id, websocket)
