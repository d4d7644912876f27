"""Unit tests validating payload schemas and the socket envelope."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.models import CallType
from app.schemas import CallInitiate, MarkReadRequest, MessageCreate
from greconnect.realtime.events import ClientEvent, build_error, build_event, parse_client_event


def test_payloads_accept_camel_and_snake_case():
    camel = CallInitiate.model_validate({"conversationId": "c1", "type": "video"})
    snake = CallInitiate(conversation_id="c1", type=CallType.AUDIO)

    assert camel.conversation_id == snake.conversation_id == "c1"
    assert camel.model_dump(by_alias=True)["conversationId"] == "c1"


def test_call_type_is_restricted():
    with pytest.raises(ValidationError):
        CallInitiate.model_validate({"conversationId": "c1", "type": "screen"})


def test_mark_read_requires_ids():
    with pytest.raises(ValidationError):
        MarkReadRequest(message_ids=[])


def test_message_attachment_size_is_non_negative():
    with pytest.raises(ValidationError):
        MessageCreate.model_validate(
            {"conversationId": "c1", "content": "", "attachments": [{"url": "u", "size": -1}]}
        )


def test_envelope_helpers():
    assert build_event("new-message", None) == {"type": "new-message", "data": {}}
    assert build_error("forbidden", "no") == {
        "type": "error",
        "data": {"code": "forbidden", "message": "no"},
    }


def test_parse_client_event():
    event, data = parse_client_event({"type": "join-call", "data": {"callId": "k"}})

    assert event is ClientEvent.JOIN_CALL
    assert data == {"callId": "k"}
    assert parse_client_event({"type": "ping"}) == (ClientEvent.PING, {})


@pytest.mark.parametrize("frame", [[], {"type": "unknown"}, {"type": "ping", "data": [1]}])
def test_parse_client_event_rejects_bad_frames(frame):
    with pytest.raises(ValueError):
        parse_client_event(frame)
