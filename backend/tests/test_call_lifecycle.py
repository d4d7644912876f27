"""State machine tests for call sessions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.enums import CallStatus, CallType
from greconnect.calls.lifecycle import (
    CallEvent,
    CallSnapshot,
    TRANSITIONS,
    apply_transition,
    compute_duration,
)
from greconnect.errors import ForbiddenError, InvalidStateError, ValidationError

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _ongoing(*participants: str, initiator: str = "alice") -> CallSnapshot:
    return CallSnapshot(
        status=CallStatus.ONGOING,
        initiator_id=initiator,
        participants=list(participants),
        call_type=CallType.VIDEO,
        start_time=START,
    )


def test_initiate_starts_ongoing_with_initiator_only():
    transition = apply_transition(
        CallSnapshot(status=None, call_type=CallType.AUDIO), CallEvent.INITIATE, "alice", now=START
    )

    assert transition.snapshot.status is CallStatus.ONGOING
    assert transition.snapshot.participants == ["alice"]
    assert transition.snapshot.duration is None
    assert transition.status_changed


def test_initiate_requires_a_call_type():
    with pytest.raises(ValidationError):
        apply_transition(CallSnapshot(status=None), CallEvent.INITIATE, "alice")


def test_join_is_idempotent():
    snapshot = _ongoing("alice")
    joined = apply_transition(snapshot, CallEvent.JOIN, "bob").snapshot
    again = apply_transition(joined, CallEvent.JOIN, "bob")

    assert joined.participants == ["alice", "bob"]
    assert again.snapshot.participants == ["alice", "bob"]
    assert not again.changed


def test_join_by_a_stranger_is_never_forbidden():
    transition = apply_transition(_ongoing("alice"), CallEvent.JOIN, "mallory")

    assert "mallory" in transition.snapshot.participants


def test_last_leave_ends_the_call_with_duration():
    snapshot = _ongoing("alice")
    transition = apply_transition(snapshot, CallEvent.LEAVE, "alice", now=START + timedelta(seconds=42.9))

    assert transition.snapshot.status is CallStatus.ENDED
    assert transition.snapshot.duration == 42
    assert transition.removed == "alice"


def test_leave_keeps_call_ongoing_while_others_remain():
    transition = apply_transition(_ongoing("alice", "bob"), CallEvent.LEAVE, "alice")

    assert transition.snapshot.status is CallStatus.ONGOING
    assert transition.snapshot.participants == ["bob"]
    assert transition.snapshot.duration is None


def test_end_by_participant_sets_duration():
    transition = apply_transition(_ongoing("alice", "bob"), CallEvent.END, "bob", now=START + timedelta(minutes=2))

    assert transition.snapshot.status is CallStatus.ENDED
    assert transition.snapshot.duration == 120
    assert transition.snapshot.end_time == START + timedelta(minutes=2)


def test_end_by_outsider_is_forbidden():
    with pytest.raises(ForbiddenError):
        apply_transition(_ongoing("alice", "bob"), CallEvent.END, "mallory")


def test_initiator_may_end_after_leaving():
    transition = apply_transition(_ongoing("bob"), CallEvent.END, "alice")

    assert transition.snapshot.status is CallStatus.ENDED


def test_decline_with_single_participant_marks_missed():
    transition = apply_transition(_ongoing("alice"), CallEvent.DECLINE, "bob", now=START + timedelta(seconds=5))

    assert transition.snapshot.status is CallStatus.MISSED
    assert transition.snapshot.duration is None
    assert transition.snapshot.end_time is not None


def test_decline_is_ignored_once_someone_joined():
    transition = apply_transition(_ongoing("alice", "bob"), CallEvent.DECLINE, "carol")

    assert transition.snapshot.status is CallStatus.ONGOING
    assert not transition.changed


@pytest.mark.parametrize("status", [CallStatus.ENDED, CallStatus.MISSED])
@pytest.mark.parametrize("event", [CallEvent.JOIN, CallEvent.LEAVE, CallEvent.DECLINE, CallEvent.END])
def test_terminal_states_reject_every_event(status, event):
    snapshot = _ongoing("alice")
    snapshot.status = status

    with pytest.raises(InvalidStateError):
        apply_transition(snapshot, event, "alice")


def test_join_after_end_reports_call_has_ended():
    ended = apply_transition(_ongoing("alice"), CallEvent.END, "alice").snapshot

    with pytest.raises(InvalidStateError, match="Call has ended"):
        apply_transition(ended, CallEvent.JOIN, "bob")


def test_duration_is_never_negative_and_tolerates_naive_timestamps():
    naive_start = START.replace(tzinfo=None)

    assert compute_duration(naive_start, START - timedelta(seconds=10)) == 0
    assert compute_duration(naive_start, START + timedelta(seconds=3)) == 3
    assert compute_duration(None, START) == 0


def test_every_transition_leaves_terminal_states_untouched():
    for status, _event in TRANSITIONS:
        assert status not in (CallStatus.ENDED, CallStatus.MISSED)


def test_missed_and_ended_calls_are_terminal():
    declined = apply_transition(_ongoing("bob"), CallEvent.DECLINE, "alice").snapshot
    ended = apply_transition(_ongoing("alice"), CallEvent.END, "alice").snapshot

    assert declined.is_terminal
    assert ended.is_terminal
    assert not _ongoing("alice").is_terminal


def test_ongoing_call_cannot_be_initiated_again():
    with pytest.raises(InvalidStateError, match="Invalid call transition"):
        apply_transition(_ongoing("alice"), CallEvent.INITIATE, "alice")
