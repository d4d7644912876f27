"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from app.models.enums import MessageType
from app.schemas.users import APIModel, UserSummary


class MessageAttachment(APIModel):
    """File or image attached to a message."""

    url: str
    type: str | None = None
    name: str | None = None
    size: int | None = Field(default=None, ge=0)


class MessageCreate(APIModel):
    """Payload for posting a message to a conversation."""

    conversation_id: str
    content: str
    type: MessageType = MessageType.TEXT
    attachments: list[MessageAttachment] = []


class MessageRead(APIModel):
    """Serialized representation of a chat message."""

    id: str
    conversation_id: str
    sender: UserSummary
    content: str
    type: MessageType
    is_deleted: bool = False
    attachments: list[MessageAttachment] = []
    read_by: list[str] = []
    created_at: datetime
    updated_at: datetime


class MarkReadRequest(APIModel):
    """Bulk read receipt for messages in a conversation."""

    message_ids: list[str] = Field(..., min_length=1)
    conversation_id: str | None = None


class MarkReadResponse(APIModel):
    message_ids: list[str]
    modified_count: int
