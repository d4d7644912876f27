"""Event names and envelope helpers for the websocket protocol.

Every frame, in both directions, is a JSON object of the form
``{"type": <event name>, "data": <payload>}``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class ClientEvent(str, Enum):
    """Events accepted from connected clients."""

    PING = "ping"
    PONG = "pong"
    JOIN_CONVERSATION = "join-conversation"
    LEAVE_CONVERSATION = "leave-conversation"
    SEND_MESSAGE = "send-message"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    MESSAGE_READ = "message-read"
    JOIN_CALL = "join-call"
    LEAVE_CALL = "leave-call"
    # Relays kept for clients that predate the REST call endpoints.
    CALL_INITIATE = "call-initiate"
    CALL_ACCEPT = "call-accept"
    CALL_REJECT = "call-reject"
    CALL_END = "call-end"


class ServerEvent(str, Enum):
    """Events emitted by the server to rooms or single connections."""

    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    NEW_MESSAGE = "new-message"
    MESSAGE_DELETED = "message-deleted"
    MESSAGES_READ = "messages-read"
    MESSAGE_READ_UPDATE = "message-read-update"
    USER_TYPING = "user-typing"
    USER_STOPPED_TYPING = "user-stopped-typing"
    CONVERSATION_UPDATED = "conversation-updated"
    INCOMING_CALL = "incoming-call"
    USER_JOINED_CALL = "user-joined-call"
    USER_LEFT_CALL = "user-left-call"
    CALL_ENDED = "call-ended"
    CALL_DECLINED = "call-declined"
    CALL_ACCEPTED = "call-accepted"
    CALL_REJECTED = "call-rejected"


def build_event(event: ServerEvent | str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Wrap *data* into the standard event envelope."""

    name = event.value if isinstance(event, Enum) else str(event)
    return {"type": name, "data": dict(data or {})}


def build_error(code: str, message: str) -> dict[str, Any]:
    return build_event(ServerEvent.ERROR, {"code": code, "message": message})


def parse_client_event(raw: Any) -> tuple[ClientEvent, dict[str, Any]]:
    """Validate an inbound frame and return its event and payload.

    Raises ``ValueError`` when the frame is not an object, names an unknown
    event, or carries a non-object payload.
    """

    if not isinstance(raw, dict):
        raise ValueError("Event frame must be a JSON object")
    try:
        event = ClientEvent(raw.get("type"))
    except ValueError:
        raise ValueError(f"Unsupported event type '{raw.get('type')}'") from None
    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Event data must be a JSON object")
    return event, data


__all__ = [
    "ClientEvent",
    "ServerEvent",
    "build_event",
    "build_error",
    "parse_client_event",
]
