"""Call lifecycle service: persistence, media tokens and signaling."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.models import Call, CallParticipant, CallStatus, CallType, User
from app.monitoring.metrics import call_transitions_total
from app.schemas import CallInitiate, CallRead, UserSummary
from app.services.conversations import get_conversation_for
from app.services.media_tokens import MediaRole, MediaTokenIssuer
from app.services.notifications import NotificationDispatcher, incoming_call_payload
from app.services import signaling
from greconnect.calls import (
    CallEvent,
    CallSnapshot,
    Transition,
    apply_transition,
    derive_channel_name,
    derive_media_uid,
)
from greconnect.errors import NotFoundError

logger = logging.getLogger(__name__)

settings = get_settings()


def serialize_call(call: Call) -> dict[str, Any]:
    return CallRead(
        id=call.id,
        conversation_id=call.conversation_id,
        initiator=UserSummary.model_validate(call.initiator),
        participants=[UserSummary.model_validate(entry.user) for entry in call.participants],
        type=call.type,
        status=call.status,
        channel_name=call.channel_name,
        start_time=call.start_time,
        end_time=call.end_time,
        duration=call.duration,
    ).model_dump(mode="json", by_alias=True)


def _snapshot(call: Call) -> CallSnapshot:
    return CallSnapshot(
        status=call.status,
        initiator_id=call.initiator_id,
        participants=call.participant_ids,
        call_type=call.type,
        start_time=call.start_time,
        end_time=call.end_time,
        duration=call.duration,
    )


def _apply(call: Call, transition: Transition) -> None:
    snapshot = transition.snapshot
    call.status = snapshot.status
    call.end_time = snapshot.end_time
    call.duration = snapshot.duration
    if transition.added is not None:
        call.participants.append(CallParticipant(user_id=transition.added))
    if transition.removed is not None:
        call.participants = [
            entry for entry in call.participants if entry.user_id != transition.removed
        ]
    call_transitions_total.labels(transition.event.value, snapshot.status.value).inc()


def _ended_payload(call: Call, ended_by: str) -> dict[str, Any]:
    return {
        "callId": call.id,
        "conversationId": call.conversation_id,
        "endedBy": ended_by,
        "duration": call.duration,
    }


def _with_people():
    return (
        selectinload(Call.initiator),
        selectinload(Call.participants).selectinload(CallParticipant.user),
    )


class CallService:
    """Drive calls through their lifecycle.

    Each operation loads the call, applies one event through the state
    machine, commits, and then signals the outcome. A media token failure
    surfaces to the caller after the call row has been stored; the row is
    not rolled back.
    """

    def __init__(self, issuer: MediaTokenIssuer, dispatcher: NotificationDispatcher) -> None:
        self._issuer = issuer
        self._dispatcher = dispatcher

    def _load(self, db: Session, call_id: str) -> Call:
        stmt = select(Call).where(Call.id == call_id).options(*_with_people())
        call = db.execute(stmt).scalar_one_or_none()
        if call is None:
            raise NotFoundError("Call not found")
        return call

    async def _session(self, call: Call, user_id: str) -> dict[str, Any]:
        uid = derive_media_uid(user_id)
        token = await self._issuer.issue(call.channel_name, uid, MediaRole.PUBLISHER)
        return {
            "call": serialize_call(call),
            "agoraToken": token,
            "channelName": call.channel_name,
            "uid": uid,
            "appId": self._issuer.app_id,
        }

    async def initiate(self, db: Session, caller: User, payload: CallInitiate) -> dict[str, Any]:
        """Start a call in a conversation and ring the other participants."""

        conversation = get_conversation_for(db, payload.conversation_id, caller.id)
        transition = apply_transition(
            CallSnapshot(status=None, call_type=CallType(payload.type)),
            CallEvent.INITIATE,
            caller.id,
        )
        snapshot = transition.snapshot
        call = Call(
            conversation_id=conversation.id,
            initiator_id=caller.id,
            type=snapshot.call_type,
            status=snapshot.status,
            channel_name=derive_channel_name(conversation.id),
            start_time=snapshot.start_time,
        )
        call.participants = [CallParticipant(user_id=user_id) for user_id in snapshot.participants]
        db.add(call)
        db.commit()
        call_transitions_total.labels(CallEvent.INITIATE.value, snapshot.status.value).inc()
        logger.info("Call %s started by user %s in conversation %s", call.id, caller.id, conversation.id)

        call = self._load(db, call.id)
        session = await self._session(call, caller.id)

        recipients = [user_id for user_id in conversation.participant_ids if user_id != caller.id]
        await signaling.announce_incoming_call(
            conversation.id,
            recipients,
            {
                "call": session["call"],
                "caller": UserSummary.model_validate(caller).model_dump(mode="json", by_alias=True),
                "channelName": call.channel_name,
            },
        )
        for user_id in recipients:
            self._dispatcher.dispatch(user_id, incoming_call_payload(caller, call))
        return session

    async def join(self, db: Session, user: User, call_id: str) -> dict[str, Any]:
        call = self._load(db, call_id)
        transition = apply_transition(_snapshot(call), CallEvent.JOIN, user.id)
        if transition.changed:
            _apply(call, transition)
            db.commit()
            call = self._load(db, call_id)
        session = await self._session(call, user.id)
        await signaling.to_call(
            call.id,
            signaling.ServerEvent.USER_JOINED_CALL,
            {"callId": call.id, "userId": user.id, "username": user.username},
        )
        return session

    async def leave(self, db: Session, user: User, call_id: str) -> dict[str, Any]:
        call = self._load(db, call_id)
        transition = apply_transition(_snapshot(call), CallEvent.LEAVE, user.id)
        if transition.changed:
            _apply(call, transition)
            db.commit()
            call = self._load(db, call_id)
        await signaling.to_call(
            call.id,
            signaling.ServerEvent.USER_LEFT_CALL,
            {"callId": call.id, "userId": user.id},
        )
        if transition.status_changed and call.status is CallStatus.ENDED:
            await signaling.to_call(call.id, signaling.ServerEvent.CALL_ENDED, _ended_payload(call, user.id))
        return {"call": serialize_call(call)}

    async def end(self, db: Session, user: User, call_id: str) -> dict[str, Any]:
        call = self._load(db, call_id)
        transition = apply_transition(_snapshot(call), CallEvent.END, user.id)
        _apply(call, transition)
        db.commit()
        call = self._load(db, call_id)
        logger.info("Call %s ended by user %s after %ss", call.id, user.id, call.duration)
        await signaling.to_call(call.id, signaling.ServerEvent.CALL_ENDED, _ended_payload(call, user.id))
        return {"call": serialize_call(call)}

    async def decline(self, db: Session, user: User, call_id: str) -> dict[str, Any]:
        call = self._load(db, call_id)
        transition = apply_transition(_snapshot(call), CallEvent.DECLINE, user.id)
        if transition.changed:
            _apply(call, transition)
            db.commit()
            call = self._load(db, call_id)
        await signaling.to_call(
            call.id,
            signaling.ServerEvent.CALL_DECLINED,
            {"callId": call.id, "declinedBy": user.id, "status": call.status.value},
        )
        return {"call": serialize_call(call), "message": "Call declined"}

    def history(self, db: Session, user: User, conversation_id: str) -> list[dict[str, Any]]:
        """Most recent calls in a conversation, newest first."""

        get_conversation_for(db, conversation_id, user.id)
        stmt = (
            select(Call)
            .where(Call.conversation_id == conversation_id)
            .options(*_with_people())
            .order_by(Call.start_time.desc())
            .limit(settings.call_history_limit)
        )
        return [serialize_call(call) for call in db.execute(stmt).scalars()]

    async def active(self, db: Session, user: User, conversation_id: str) -> dict[str, Any]:
        get_conversation_for(db, conversation_id, user.id)
        stmt = (
            select(Call)
            .where(Call.conversation_id == conversation_id, Call.status == CallStatus.ONGOING)
            .options(*_with_people())
            .order_by(Call.start_time.desc())
            .limit(1)
        )
        call = db.execute(stmt).scalar_one_or_none()
        if call is None:
            return {"call": None, "hasActiveCall": False}
        session = await self._session(call, user.id)
        return {"hasActiveCall": True, **session}
