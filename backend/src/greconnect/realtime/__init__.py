"""Realtime helpers for websocket sessions, rooms and cross-node relay."""

from .managers import (  # noqa: F401
    RoomManager,
    get_room_manager,
    get_session_registry,
    safe_send_json,
    shutdown_realtime,
    startup_realtime,
)
from .rooms import RoomKey, RoomKind  # noqa: F401
from .sessions import SessionRegistry  # noqa: F401

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_session_registry",
    "safe_send_json",
    "RoomManager",
    "RoomKey",
    "RoomKind",
    "SessionRegistry",
]
