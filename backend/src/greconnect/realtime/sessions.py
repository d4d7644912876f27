"""Process-local registry of authenticated websocket sessions."""

from __future__ import annotations

import asyncio
from typing import Dict

from fastapi.websockets import WebSocket


class SessionRegistry:
    """Map a user id to the websocket that most recently authenticated as it.

    Only one handle is tracked per user. A newer connection replaces the older
    entry; unregistering with a handle that has since been replaced leaves the
    newer registration in place.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, websocket: WebSocket) -> WebSocket | None:
        """Store *websocket* for *user_id* and return the handle it replaced, if any."""

        async with self._lock:
            previous = self._sessions.get(user_id)
            self._sessions[user_id] = websocket
            return previous if previous is not websocket else None

    async def unregister(self, user_id: str, websocket: WebSocket | None = None) -> bool:
        async with self._lock:
            current = self._sessions.get(user_id)
            if current is None:
                return False
            if websocket is not None and current is not websocket:
                return False
            self._sessions.pop(user_id, None)
            return True

    def lookup(self, user_id: str) -> WebSocket | None:
        return self._sessions.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["SessionRegistry"]
