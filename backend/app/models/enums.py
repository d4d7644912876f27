from __future__ import annotations

from enum import Enum


class ConversationType(str, Enum):
    """Kinds of conversations a user can take part in."""

    DIRECT = "direct"
    GROUP = "group"


class MessageType(str, Enum):
    """Content categories for chat messages."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class CallType(str, Enum):
    """Media kinds supported by calls."""

    AUDIO = "audio"
    VIDEO = "video"


class CallStatus(str, Enum):
    """Persisted lifecycle states of a call."""

    ONGOING = "ongoing"
    ENDED = "ended"
    MISSED = "missed"


class NotificationType(str, Enum):
    """Categories of user notifications."""

    MESSAGE = "message"
    CALL = "call"
    ANNOUNCEMENT = "announcement"
    EVENT = "event"
    ASSIGNMENT = "assignment"
    SYSTEM = "system"
