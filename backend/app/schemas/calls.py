"""Schemas for call sessions."""

from __future__ import annotations

from datetime import datetime

from app.models.enums import CallStatus, CallType
from app.schemas.users import APIModel, UserSummary


class CallInitiate(APIModel):
    conversation_id: str
    type: CallType


class CallRead(APIModel):
    """Serialized call with populated initiator and participants."""

    id: str
    conversation_id: str
    initiator: UserSummary
    participants: list[UserSummary]
    type: CallType
    status: CallStatus
    channel_name: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int | None = None


class CallSession(APIModel):
    """Call plus the media credentials the caller needs to connect."""

    call: CallRead
    agora_token: str
    channel_name: str
    uid: int
    app_id: str | None = None


class CallResponse(APIModel):
    call: CallRead


class CallDeclineResponse(APIModel):
    call: CallRead
    message: str


class ActiveCallResponse(APIModel):
    call: CallRead | None = None
    has_active_call: bool
    agora_token: str | None = None
    channel_name: str | None = None
    uid: int | None = None
    app_id: str | None = None
