"""Call session state machine.

A call is created directly in ``ongoing``; there is no persisted ringing
state. ``ended`` and ``missed`` are terminal. Every status change goes
through :func:`apply_transition`, which looks the event up in an explicit
transition table and rejects anything the table does not define.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict

from app.models.enums import CallStatus, CallType

from ..errors import ForbiddenError, InvalidStateError, ValidationError

TERMINAL_STATUSES = frozenset({CallStatus.ENDED, CallStatus.MISSED})


class CallEvent(str, Enum):
    """Events that drive a call through its lifecycle."""

    INITIATE = "initiate"
    JOIN = "join"
    LEAVE = "leave"
    END = "end"
    DECLINE = "decline"


@dataclass(slots=True)
class CallSnapshot:
    """Lifecycle-relevant view of a call row."""

    status: CallStatus | None
    initiator_id: str | None = None
    participants: list[str] = field(default_factory=list)
    call_type: CallType | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of applying an event to a snapshot."""

    event: CallEvent
    previous: CallStatus | None
    snapshot: CallSnapshot
    added: str | None = None
    removed: str | None = None

    @property
    def status_changed(self) -> bool:
        return self.previous != self.snapshot.status

    @property
    def changed(self) -> bool:
        return self.status_changed or self.added is not None or self.removed is not None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_duration(start: datetime | None, end: datetime) -> int:
    """Whole seconds between *start* and *end*, clamped at zero."""

    if start is None:
        return 0
    delta = (_as_utc(end) - _as_utc(start)).total_seconds()
    return max(0, math.floor(delta))


def _initiate(snapshot: CallSnapshot, actor_id: str, now: datetime) -> Transition:
    if snapshot.call_type is None:
        raise ValidationError("Call type must be 'audio' or 'video'")
    started = replace(
        snapshot,
        status=CallStatus.ONGOING,
        initiator_id=actor_id,
        participants=[actor_id],
        start_time=now,
        end_time=None,
        duration=None,
    )
    return Transition(CallEvent.INITIATE, None, started, added=actor_id)


def _join(snapshot: CallSnapshot, actor_id: str, now: datetime) -> Transition:
    if actor_id in snapshot.participants:
        return Transition(CallEvent.JOIN, snapshot.status, replace(snapshot))
    participants = [*snapshot.participants, actor_id]
    return Transition(
        CallEvent.JOIN,
        snapshot.status,
        replace(snapshot, participants=participants),
        added=actor_id,
    )


def _terminate(snapshot: CallSnapshot, now: datetime) -> CallSnapshot:
    return replace(
        snapshot,
        status=CallStatus.ENDED,
        end_time=now,
        duration=compute_duration(snapshot.start_time, now),
    )


def _leave(snapshot: CallSnapshot, actor_id: str, now: datetime) -> Transition:
    if actor_id not in snapshot.participants:
        return Transition(CallEvent.LEAVE, snapshot.status, replace(snapshot))
    remaining = [user_id for user_id in snapshot.participants if user_id != actor_id]
    updated = replace(snapshot, participants=remaining)
    if not remaining:
        updated = _terminate(updated, now)
    return Transition(CallEvent.LEAVE, snapshot.status, updated, removed=actor_id)


def _end(snapshot: CallSnapshot, actor_id: str, now: datetime) -> Transition:
    return Transition(CallEvent.END, snapshot.status, _terminate(snapshot, now))


def _decline(snapshot: CallSnapshot, actor_id: str, now: datetime) -> Transition:
    if len(snapshot.participants) > 1:
        return Transition(CallEvent.DECLINE, snapshot.status, replace(snapshot))
    missed = replace(snapshot, status=CallStatus.MISSED, end_time=now, duration=None)
    return Transition(CallEvent.DECLINE, snapshot.status, missed)


Handler = Callable[[CallSnapshot, str, datetime], Transition]

TRANSITIONS: Dict[tuple[CallStatus | None, CallEvent], Handler] = {
    (None, CallEvent.INITIATE): _initiate,
    (CallStatus.ONGOING, CallEvent.JOIN): _join,
    (CallStatus.ONGOING, CallEvent.LEAVE): _leave,
    (CallStatus.ONGOING, CallEvent.END): _end,
    (CallStatus.ONGOING, CallEvent.DECLINE): _decline,
}

_TERMINAL_MESSAGES = {
    CallEvent.JOIN: "Call has ended",
    CallEvent.LEAVE: "Call has already ended",
    CallEvent.END: "Call has already ended",
    CallEvent.DECLINE: "Call is no longer ongoing",
}


def can_end(snapshot: CallSnapshot, actor_id: str) -> bool:
    return actor_id == snapshot.initiator_id or actor_id in snapshot.participants


def apply_transition(
    snapshot: CallSnapshot,
    event: CallEvent,
    actor_id: str,
    now: datetime | None = None,
) -> Transition:
    """Apply *event* by *actor_id* and return the resulting transition.

    Raises :class:`ForbiddenError` when someone who is neither the initiator
    nor a participant tries to end the call, and :class:`InvalidStateError`
    for events the table does not define from the current status.
    """

    now = now or datetime.now(timezone.utc)
    if event is CallEvent.END and not can_end(snapshot, actor_id):
        raise ForbiddenError("Only the initiator or a participant can end this call")
    handler = TRANSITIONS.get((snapshot.status, event))
    if handler is None:
        if snapshot.is_terminal:
            raise InvalidStateError(_TERMINAL_MESSAGES.get(event, "Invalid call transition"))
        if snapshot.status is None:
            raise InvalidStateError("Call has not been initiated")
        raise InvalidStateError("Invalid call transition")
    return handler(snapshot, actor_id, now)


__all__ = [
    "CallEvent",
    "CallSnapshot",
    "Transition",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "apply_transition",
    "can_end",
    "compute_duration",
]
