"""Application service helpers."""

from .notifications import dispatcher, get_notification_dispatcher
from .media_tokens import get_media_token_issuer
from .calls import CallService

__all__ = [
    "dispatcher",
    "get_notification_dispatcher",
    "get_media_token_issuer",
    "CallService",
]
