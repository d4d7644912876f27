"""Database models package."""

from .base import Base
from .chat import (
    Call,
    CallParticipant,
    Conversation,
    ConversationParticipant,
    Message,
    MessageReceipt,
    Notification,
    User,
)
from .enums import CallStatus, CallType, ConversationType, MessageType, NotificationType

__all__ = [
    "Base",
    "User",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageReceipt",
    "Call",
    "CallParticipant",
    "Notification",
    "ConversationType",
    "MessageType",
    "CallType",
    "CallStatus",
    "NotificationType",
]
