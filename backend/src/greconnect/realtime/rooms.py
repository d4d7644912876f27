"""Tagged room identifiers used for websocket broadcast groups."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RoomKind(str, Enum):
    """Namespaces a broadcast room can belong to."""

    CONVERSATION = "conversation"
    CALL = "call"
    USER = "user"


@dataclass(frozen=True, slots=True)
class RoomKey:
    """Identifier of a broadcast room.

    The kind is part of the key, so a conversation and a call that happen to
    share an identifier never address the same room.
    """

    kind: RoomKind
    ident: str

    @classmethod
    def conversation(cls, conversation_id: str) -> "RoomKey":
        return cls(RoomKind.CONVERSATION, str(conversation_id))

    @classmethod
    def call(cls, call_id: str) -> "RoomKey":
        return cls(RoomKind.CALL, str(call_id))

    @classmethod
    def personal(cls, user_id: str) -> "RoomKey":
        return cls(RoomKind.USER, str(user_id))

    @property
    def channel(self) -> str:
        """Wire representation used when relaying events through the backplane."""

        return f"{self.kind.value}:{self.ident}"

    @classmethod
    def parse(cls, value: str) -> "RoomKey":
        kind, sep, ident = value.partition(":")
        if not sep or not ident:
            raise ValueError(f"Malformed room key '{value}'")
        return cls(RoomKind(kind), ident)

    def __str__(self) -> str:
        return self.channel


__all__ = ["RoomKind", "RoomKey"]
