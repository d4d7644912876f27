"""Conversation lookup, creation and membership checks."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.models import Conversation, ConversationParticipant, ConversationType, User
from app.schemas import ConversationCreate, ConversationRead, UserSummary
from greconnect.errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    participants = [UserSummary.model_validate(entry.user) for entry in conversation.participants]
    return ConversationRead(
        id=conversation.id,
        name=conversation.name,
        type=conversation.type,
        participants=participants,
        last_message=conversation.last_message,
        last_message_time=conversation.last_message_time,
        avatar=conversation.avatar,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    ).model_dump(mode="json", by_alias=True)


def _with_participants():
    return selectinload(Conversation.participants).selectinload(ConversationParticipant.user)


def get_conversation(db: Session, conversation_id: str) -> Conversation:
    stmt = select(Conversation).where(Conversation.id == conversation_id).options(_with_participants())
    conversation = db.execute(stmt).scalar_one_or_none()
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


def require_participant(conversation: Conversation, user_id: str) -> None:
    if user_id not in conversation.participant_ids:
        raise ForbiddenError("Not a participant in this conversation")


def get_conversation_for(db: Session, conversation_id: str, user_id: str) -> Conversation:
    """Load a conversation the user takes part in."""

    conversation = get_conversation(db, conversation_id)
    require_participant(conversation, user_id)
    return conversation


def _member_conversations(user_id: str):
    member_ids = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    return (
        select(Conversation)
        .where(Conversation.id.in_(member_ids))
        .options(_with_participants())
        .order_by(Conversation.last_message_time.desc(), Conversation.created_at.desc())
    )


def list_conversations(db: Session, user_id: str) -> list[Conversation]:
    return list(db.execute(_member_conversations(user_id)).scalars())


def search_conversations(db: Session, user_id: str, query: str) -> list[Conversation]:
    """Match the query against conversation names and the latest message."""

    pattern = f"%{query.strip().lower()}%"
    stmt = _member_conversations(user_id).where(
        or_(
            func.lower(Conversation.name).like(pattern),
            func.lower(Conversation.last_message).like(pattern),
        )
    )
    return list(db.execute(stmt).scalars())


def _find_direct(db: Session, first: str, second: str) -> Conversation | None:
    pair = [first, second]
    counts = (
        select(ConversationParticipant.conversation_id)
        .join(Conversation, Conversation.id == ConversationParticipant.conversation_id)
        .where(Conversation.type == ConversationType.DIRECT)
        .group_by(ConversationParticipant.conversation_id)
        .having(
            func.count(ConversationParticipant.id) == 2,
            func.sum(case((ConversationParticipant.user_id.in_(pair), 1), else_=0)) == 2,
        )
    )
    conversation_id = db.execute(counts.limit(1)).scalar_one_or_none()
    if conversation_id is None:
        return None
    return get_conversation(db, conversation_id)


def create_conversation(db: Session, creator: User, payload: ConversationCreate) -> tuple[Conversation, bool]:
    """Create a conversation, reusing an existing direct one for the same pair.

    Returns the conversation and whether it was newly created.
    """

    others = [user_id for user_id in dict.fromkeys(payload.participant_ids) if user_id != creator.id]
    if payload.type is ConversationType.DIRECT and len(others) != 1:
        raise ValidationError("Direct conversation must have exactly 2 participants")
    if not others:
        raise ValidationError("A conversation needs at least one other participant")

    found = db.execute(select(User.id).where(User.id.in_(others))).scalars().all()
    missing = set(others) - set(found)
    if missing:
        raise NotFoundError(f"Unknown participants: {', '.join(sorted(missing))}")

    if payload.type is ConversationType.DIRECT:
        existing = _find_direct(db, creator.id, others[0])
        if existing is not None:
            return existing, False

    conversation = Conversation(name=payload.name, type=payload.type, avatar=payload.avatar)
    conversation.participants = [
        ConversationParticipant(user_id=user_id) for user_id in [creator.id, *others]
    ]
    db.add(conversation)
    db.commit()
    logger.info("Conversation %s created by user %s", conversation.id, creator.id)
    return get_conversation(db, conversation.id), True


def delete_conversation(db: Session, user_id: str, conversation_id: str) -> None:
    """Delete a conversation and its messages. Calls are kept."""

    conversation = get_conversation_for(db, conversation_id, user_id)
    db.delete(conversation)
    db.commit()
