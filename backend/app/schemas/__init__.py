"""Pydantic schemas for API payloads."""

from .calls import (
    ActiveCallResponse,
    CallDeclineResponse,
    CallInitiate,
    CallRead,
    CallResponse,
    CallSession,
)
from .conversations import ConversationCreate, ConversationRead
from .messages import (
    MarkReadRequest,
    MarkReadResponse,
    MessageAttachment,
    MessageCreate,
    MessageRead,
)
from .notifications import (
    FcmTokenUpdate,
    NotificationCreate,
    NotificationPage,
    NotificationRead,
    NotificationsMarkRead,
    UnreadCount,
)
from .users import APIModel, UserSummary

__all__ = [
    "APIModel",
    "UserSummary",
    "ConversationCreate",
    "ConversationRead",
    "MessageAttachment",
    "MessageCreate",
    "MessageRead",
    "MarkReadRequest",
    "MarkReadResponse",
    "CallInitiate",
    "CallRead",
    "CallSession",
    "CallResponse",
    "CallDeclineResponse",
    "ActiveCallResponse",
    "NotificationCreate",
    "NotificationRead",
    "NotificationPage",
    "NotificationsMarkRead",
    "UnreadCount",
    "FcmTokenUpdate",
]
