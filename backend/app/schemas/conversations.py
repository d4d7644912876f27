"""Schemas for direct and group conversations."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from app.models.enums import ConversationType
from app.schemas.users import APIModel, UserSummary


class ConversationCreate(APIModel):
    """Start a conversation with one or more other users.

    The current user is always added; for direct conversations exactly one
    other participant must be given.
    """

    participant_ids: list[str] = Field(..., min_length=1)
    type: ConversationType = ConversationType.DIRECT
    name: str | None = Field(default=None, max_length=255)
    avatar: str | None = None


class ConversationRead(APIModel):
    id: str
    name: str | None = None
    type: ConversationType
    participants: list[UserSummary]
    last_message: str = ""
    last_message_time: datetime | None = None
    avatar: str | None = None
    created_at: datetime
    updated_at: datetime
