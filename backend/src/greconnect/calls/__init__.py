"""Call lifecycle and media channel helpers."""

from .channels import derive_channel_name, derive_media_uid  # noqa: F401
from .lifecycle import (  # noqa: F401
    CallEvent,
    CallSnapshot,
    Transition,
    apply_transition,
)

__all__ = [
    "CallEvent",
    "CallSnapshot",
    "Transition",
    "apply_transition",
    "derive_channel_name",
    "derive_media_uid",
]
