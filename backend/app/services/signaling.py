"""Socket fan-out for call signaling.

These helpers never raise into the caller once the room manager has been
asked to deliver; a call that was persisted stays persisted whether or not
anybody is listening.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from greconnect.realtime import RoomKey, get_room_manager
from greconnect.realtime.events import ServerEvent

logger = logging.getLogger(__name__)


async def to_call(call_id: str, event: ServerEvent, data: Mapping[str, Any]) -> int:
    return await get_room_manager().broadcast(RoomKey.call(call_id), event, data)


async def to_users(user_ids: Iterable[str], event: ServerEvent, data: Mapping[str, Any]) -> int:
    rooms = get_room_manager()
    delivered = 0
    for user_id in dict.fromkeys(user_ids):
        delivered += await rooms.emit_to_user(user_id, event, data)
    return delivered


async def announce_incoming_call(
    conversation_id: str, recipients: Iterable[str], data: Mapping[str, Any]
) -> None:
    """Ring each recipient directly and notify the conversation room."""

    await to_users(recipients, ServerEvent.INCOMING_CALL, data)
    await get_room_manager().broadcast(
        RoomKey.conversation(conversation_id), ServerEvent.INCOMING_CALL, data
    )


# ---------------------------------------------------------------------------
# Client-driven relays
#
# Older clients negotiate calls purely over the socket. These events carry no
# persistence; the server only forwards them.
# ---------------------------------------------------------------------------


def _participants(data: Mapping[str, Any]) -> list[str]:
    values = data.get("participants") or []
    if not isinstance(values, list):
        return []
    return [str(value) for value in values if value]


async def relay_call_initiate(user: Mapping[str, Any], data: Mapping[str, Any]) -> None:
    payload = {
        "conversationId": data.get("conversationId"),
        "type": data.get("type"),
        "caller": dict(user),
        "callId": data.get("callId"),
    }
    caller_id = user.get("id")
    recipients = [user_id for user_id in _participants(data) if user_id != caller_id]
    await to_users(recipients, ServerEvent.INCOMING_CALL, payload)


async def relay_call_accept(user: Mapping[str, Any], data: Mapping[str, Any]) -> None:
    call_id = str(data.get("callId", ""))
    caller_id = data.get("callerId")
    if caller_id:
        await to_users(
            [str(caller_id)],
            ServerEvent.CALL_ACCEPTED,
            {"conversationId": data.get("conversationId"), "callId": call_id, "acceptedBy": dict(user)},
        )
    if call_id:
        await to_call(call_id, ServerEvent.USER_JOINED_CALL, {"callId": call_id, "user": dict(user)})


async def relay_call_reject(user: Mapping[str, Any], data: Mapping[str, Any]) -> None:
    call_id = str(data.get("callId", ""))
    caller_id = data.get("callerId")
    if caller_id:
        await to_users(
            [str(caller_id)],
            ServerEvent.CALL_REJECTED,
            {"conversationId": data.get("conversationId"), "callId": call_id, "rejectedBy": dict(user)},
        )
    if call_id:
        await to_call(call_id, ServerEvent.CALL_DECLINED, {"callId": call_id, "declinedBy": user.get("id")})


async def relay_call_end(user: Mapping[str, Any], data: Mapping[str, Any]) -> None:
    call_id = str(data.get("callId", ""))
    sender_id = user.get("id")
    # endedBy is the bare user id, matching the REST-driven call-ended event.
    payload = {"callId": call_id, "conversationId": data.get("conversationId"), "endedBy": sender_id}
    if call_id:
        await to_call(call_id, ServerEvent.CALL_ENDED, payload)
    recipients = [user_id for user_id in _participants(data) if user_id != sender_id]
    await to_users(recipients, ServerEvent.CALL_ENDED, payload)


__all__ = [
    "ServerEvent",
    "announce_incoming_call",
    "relay_call_accept",
    "relay_call_end",
    "relay_call_initiate",
    "relay_call_reject",
    "to_call",
    "to_users",
]
