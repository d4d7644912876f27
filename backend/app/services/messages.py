"""Message persistence followed by room fan-out.

Each mutation commits first and only then broadcasts, so members never see an
event for a write that failed. Concurrent senders in one conversation may
have their broadcasts interleave; the stored creation time is the only order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from fastapi.websockets import WebSocket
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.models import ConversationParticipant, Message, MessageReceipt, User
from app.schemas import MessageCreate, MessageRead
from app.services.conversations import get_conversation_for, serialize_conversation
from app.services.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
    new_message_payload,
)
from greconnect.errors import ForbiddenError, NotFoundError, ValidationError
from greconnect.realtime import RoomKey, get_room_manager, get_session_registry
from greconnect.realtime.events import ServerEvent

logger = logging.getLogger(__name__)

settings = get_settings()

DELETED_PLACEHOLDER = "This message was deleted"


def serialize_message(message: Message) -> dict[str, Any]:
    return MessageRead.model_validate(message).model_dump(mode="json", by_alias=True)


def _load_message(db: Session, message_id: str) -> Message:
    stmt = (
        select(Message)
        .where(Message.id == message_id)
        .options(selectinload(Message.sender), selectinload(Message.receipts))
    )
    message = db.execute(stmt).scalar_one_or_none()
    if message is None:
        raise NotFoundError("Message not found")
    return message


def list_messages(
    db: Session,
    user_id: str,
    conversation_id: str,
    *,
    limit: int | None = None,
    before: datetime | None = None,
) -> list[Message]:
    """Return up to *limit* messages older than *before*, oldest first."""

    get_conversation_for(db, conversation_id, user_id)
    limit = limit or settings.chat_history_default_limit
    limit = max(1, min(limit, settings.chat_history_max_limit))
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .options(selectinload(Message.sender), selectinload(Message.receipts))
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    if before is not None:
        stmt = stmt.where(Message.created_at < before)
    messages = list(db.execute(stmt).scalars())
    messages.reverse()
    return messages


def _validate(payload: MessageCreate) -> str:
    content = payload.content.strip()
    if not content and not payload.attachments:
        raise ValidationError("Message content is required")
    if len(content) > settings.chat_message_max_length:
        raise ValidationError(
            f"Message exceeds {settings.chat_message_max_length} characters"
        )
    return content


async def send_message(
    db: Session,
    sender: User,
    payload: MessageCreate,
    *,
    dispatcher: NotificationDispatcher | None = None,
) -> Message:
    """Persist a message, then announce it to the conversation."""

    content = _validate(payload)
    conversation = get_conversation_for(db, payload.conversation_id, sender.id)

    now = datetime.now(timezone.utc)
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        content=content,
        type=payload.type,
        attachments=[attachment.model_dump(exclude_none=True) for attachment in payload.attachments],
        created_at=now,
        updated_at=now,
    )
    message.receipts = [MessageReceipt(user_id=sender.id)]
    conversation.last_message = content
    conversation.last_message_time = now
    db.add(message)
    db.commit()

    message = _load_message(db, message.id)
    rooms = get_room_manager()
    await rooms.broadcast(
        RoomKey.conversation(conversation.id),
        ServerEvent.NEW_MESSAGE,
        serialize_message(message),
    )

    summary = serialize_conversation(conversation)
    sessions = get_session_registry()
    dispatcher = dispatcher or get_notification_dispatcher()
    for participant_id in conversation.participant_ids:
        if participant_id == sender.id:
            continue
        await rooms.emit_to_user(participant_id, ServerEvent.CONVERSATION_UPDATED, summary)
        if sessions.lookup(participant_id) is None:
            dispatcher.dispatch(participant_id, new_message_payload(sender, message))
    return message


async def delete_message(db: Session, user_id: str, message_id: str) -> Message:
    """Soft-delete a message owned by *user_id*."""

    message = _load_message(db, message_id)
    if message.sender_id != user_id:
        raise ForbiddenError("Can only delete own messages")
    message.is_deleted = True
    message.content = DELETED_PLACEHOLDER
    db.commit()

    await get_room_manager().broadcast(
        RoomKey.conversation(message.conversation_id),
        ServerEvent.MESSAGE_DELETED,
        {"messageId": message.id, "conversationId": message.conversation_id},
    )
    return message


def _readable_messages(db: Session, user_id: str, message_ids: Iterable[str]) -> list[Message]:
    """Load the requested messages that sit in conversations *user_id* belongs to."""

    member_of = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    stmt = (
        select(Message)
        .where(Message.id.in_(list(message_ids)), Message.conversation_id.in_(member_of))
        .options(selectinload(Message.receipts))
    )
    return list(db.execute(stmt).scalars())


def _require_conversation(messages: Iterable[Message], conversation_id: str | None) -> None:
    if conversation_id is None:
        return
    if any(message.conversation_id != conversation_id for message in messages):
        raise ValidationError("Messages do not belong to this conversation")


def _add_receipts(db: Session, user_id: str, messages: Iterable[Message]) -> int:
    added = 0
    for message in messages:
        if user_id in message.read_by:
            continue
        message.receipts.append(MessageReceipt(user_id=user_id))
        added += 1
    if added:
        db.commit()
    return added


async def mark_as_read(
    db: Session,
    user_id: str,
    message_ids: list[str],
    conversation_id: str | None = None,
) -> tuple[list[str], int]:
    """Mark messages read in bulk and tell each conversation they belong to.

    A *conversation_id* that does not own every readable message is rejected
    before anything is stored.
    """

    messages = _readable_messages(db, user_id, dict.fromkeys(message_ids))
    _require_conversation(messages, conversation_id)
    added = _add_receipts(db, user_id, messages)

    by_conversation: dict[str, list[str]] = {}
    for message in messages:
        by_conversation.setdefault(message.conversation_id, []).append(message.id)
    rooms = get_room_manager()
    for owner_id, ids in by_conversation.items():
        await rooms.broadcast(
            RoomKey.conversation(owner_id),
            ServerEvent.MESSAGES_READ,
            {"messageIds": ids, "userId": user_id, "conversationId": owner_id},
        )
    return [message.id for message in messages], added


async def mark_one_as_read(
    db: Session,
    user_id: str,
    message_id: str,
    conversation_id: str,
    websocket: WebSocket,
) -> bool:
    """Socket read receipt for a single message; the reader is not echoed."""

    messages = _readable_messages(db, user_id, [message_id])
    if not messages:
        raise NotFoundError("Message not found")
    _require_conversation(messages, conversation_id)
    added = _add_receipts(db, user_id, messages)
    owner_id = messages[0].conversation_id
    await get_room_manager().broadcast_except(
        RoomKey.conversation(owner_id),
        ServerEvent.MESSAGE_READ_UPDATE,
        {"messageId": message_id, "userId": user_id, "conversationId": owner_id},
        websocket,
    )
    return bool(added)
