"""Notification inbox and the best-effort push side channel.

:meth:`NotificationDispatcher.dispatch` is the only entry point callers use
to notify someone outside the websocket path. It schedules a background task
and returns immediately. The task stores the notification, then pushes it to
the recipient's device. Every failure is logged and counted; none reach the
caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app import database
from app.config import get_settings
from app.models import Call, Message, Notification, NotificationType, User
from app.monitoring.metrics import notification_dispatch_total
from app.schemas.notifications import NotificationCreate
from app.services.push import PushClient, PushMessage, get_push_client, stringify_data
from greconnect.errors import NotFoundError, StaleRecipientTokenError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

settings = get_settings()

MESSAGE_PREVIEW_LENGTH = 100


@dataclass(slots=True)
class NotificationPayload:
    """What to tell the recipient."""

    type: NotificationType
    title: str
    message: str
    sender_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    route: str | None = None


def incoming_call_payload(caller: User, call: Call) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.CALL,
        title=f"Incoming {call.type.value} call",
        message=f"{caller.display_name} is calling you",
        sender_id=caller.id,
        data={
            "type": "incoming_call",
            "callId": call.id,
            "callType": call.type.value,
            "conversationId": call.conversation_id,
            "callerName": caller.display_name,
        },
        route=f"/calls/{call.id}",
    )


def new_message_payload(sender: User, message: Message) -> NotificationPayload:
    preview = message.content
    if len(preview) > MESSAGE_PREVIEW_LENGTH:
        preview = preview[:MESSAGE_PREVIEW_LENGTH] + "..."
    return NotificationPayload(
        type=NotificationType.MESSAGE,
        title=f"New message from {sender.display_name}",
        message=preview,
        sender_id=sender.id,
        data={
            "type": "new_message",
            "conversationId": message.conversation_id,
            "messageId": message.id,
            "senderName": sender.display_name,
        },
        route=f"/conversations/{message.conversation_id}",
    )


class NotificationDispatcher:
    """Fire-and-forget delivery of notifications."""

    def __init__(
        self,
        push_client: PushClient | None = None,
        *,
        push_client_factory: Callable[[], PushClient | None] | None = None,
        min_token_length: int = 50,
    ) -> None:
        self._push_client = push_client
        self._push_client_factory = push_client_factory
        self._min_token_length = min_token_length
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _client(self) -> PushClient | None:
        if self._push_client is None and self._push_client_factory is not None:
            self._push_client = self._push_client_factory()
        return self._push_client

    def dispatch(self, recipient_id: str, payload: NotificationPayload) -> asyncio.Task[None] | None:
        """Schedule delivery of *payload* to *recipient_id* and return at once."""

        return self._spawn(recipient_id, payload, None)

    def dispatch_stored(
        self, notification: Notification, token: str | None
    ) -> asyncio.Task[None] | None:
        """Push a notification the caller has already stored."""

        payload = NotificationPayload(
            type=notification.type,
            title=notification.title,
            message=notification.message,
            sender_id=notification.sender_id,
            data=dict(notification.data or {}),
            route=notification.route,
        )
        return self._spawn(notification.recipient_id, payload, (notification.id, token))

    def _spawn(
        self,
        recipient_id: str,
        payload: NotificationPayload,
        stored: tuple[str, str | None] | None,
    ) -> asyncio.Task[None] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; dropping %s notification for user %s",
                payload.type.value,
                recipient_id,
            )
            notification_dispatch_total.labels(payload.type.value, "dropped").inc()
            return None
        task = loop.create_task(
            self._deliver(recipient_id, payload, stored), name=f"notify-{recipient_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(
        self,
        recipient_id: str,
        payload: NotificationPayload,
        stored: tuple[str, str | None] | None = None,
    ) -> None:
        kind = payload.type.value
        try:
            if stored is None:
                stored = self._persist(recipient_id, payload)
                notification_dispatch_total.labels(kind, "stored").inc()
            await self._push(recipient_id, stored, payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            notification_dispatch_total.labels(kind, "failed").inc()
            logger.exception("Failed to deliver %s notification to user %s", kind, recipient_id)

    def _persist(self, recipient_id: str, payload: NotificationPayload) -> tuple[str, str | None]:
        with database.get_db_session() as db:
            notification = Notification(
                recipient_id=recipient_id,
                sender_id=payload.sender_id,
                type=payload.type,
                title=payload.title,
                message=payload.message,
                data=payload.data or None,
                route=payload.route,
            )
            db.add(notification)
            db.commit()
            token = db.execute(select(User.fcm_token).where(User.id == recipient_id)).scalar_one_or_none()
            return notification.id, token

    async def _push(
        self, recipient_id: str, stored: tuple[str, str | None], payload: NotificationPayload
    ) -> None:
        kind = payload.type.value
        notification_id, token = stored
        client = self._client()
        if client is None:
            notification_dispatch_total.labels(kind, "push_disabled").inc()
            return
        if not token:
            logger.debug("User %s has no push token; skipping push", recipient_id)
            notification_dispatch_total.labels(kind, "no_token").inc()
            return
        if len(token) < self._min_token_length:
            logger.warning("Discarding malformed push token for user %s", recipient_id)
            self._clear_token(recipient_id, token)
            notification_dispatch_total.labels(kind, "stale_token").inc()
            return

        data = stringify_data(
            {
                **payload.data,
                "type": payload.data.get("type", kind),
                "notificationId": notification_id,
                "route": payload.route or "",
            }
        )
        try:
            await client.send(PushMessage(token=token, title=payload.title, body=payload.message, data=data))
        except StaleRecipientTokenError:
            logger.info("Push token for user %s was rejected; removing it", recipient_id)
            self._clear_token(recipient_id, token)
            notification_dispatch_total.labels(kind, "stale_token").inc()
        except UpstreamUnavailableError as exc:
            logger.warning("Push delivery to user %s failed: %s", recipient_id, exc)
            notification_dispatch_total.labels(kind, "push_failed").inc()
        else:
            notification_dispatch_total.labels(kind, "pushed").inc()

    @staticmethod
    def _clear_token(recipient_id: str, token: str) -> None:
        # Only clear the token we tried; the device may have re-registered meanwhile.
        with database.get_db_session() as db:
            db.execute(
                update(User)
                .where(User.id == recipient_id, User.fcm_token == token)
                .values(fcm_token=None)
            )
            db.commit()


dispatcher = NotificationDispatcher(
    push_client_factory=get_push_client,
    min_token_length=settings.push_token_min_length,
)


def get_notification_dispatcher() -> NotificationDispatcher:
    return dispatcher


# ---------------------------------------------------------------------------
# Inbox operations
# ---------------------------------------------------------------------------


def list_notifications(db: Session, user_id: str, *, page: int = 1, limit: int = 20) -> tuple[list[Notification], int, int]:
    """Return a page of notifications, newest first, with total and unread counts."""

    page = max(page, 1)
    stmt = (
        select(Notification)
        .where(Notification.recipient_id == user_id)
        .options(selectinload(Notification.sender))
        .order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    notifications = list(db.execute(stmt).scalars())
    total = db.execute(
        select(func.count()).select_from(Notification).where(Notification.recipient_id == user_id)
    ).scalar_one()
    return notifications, total, unread_count(db, user_id)


def unread_count(db: Session, user_id: str) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.recipient_id == user_id,
        Notification.is_read.is_(False),
    )
    return db.execute(stmt).scalar_one()


def mark_read(db: Session, user_id: str, notification_ids: list[str]) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.id.in_(notification_ids), Notification.recipient_id == user_id)
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount


def mark_all_read(db: Session, user_id: str) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount


def create_notification(
    db: Session,
    sender: User,
    payload: NotificationCreate,
    *,
    dispatcher: NotificationDispatcher | None = None,
) -> Notification:
    """Store a notification for another user and push it in the background."""

    recipient = db.get(User, payload.recipient_id)
    if recipient is None:
        raise NotFoundError("Recipient not found")
    notification = Notification(
        recipient_id=recipient.id,
        sender_id=sender.id,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        data=payload.data or None,
        route=payload.route,
    )
    db.add(notification)
    db.commit()
    notification_dispatch_total.labels(payload.type.value, "stored").inc()

    (dispatcher or get_notification_dispatcher()).dispatch_stored(notification, recipient.fcm_token)
    stmt = (
        select(Notification)
        .where(Notification.id == notification.id)
        .options(selectinload(Notification.sender))
    )
    return db.execute(stmt).scalar_one()


def delete_notification(db: Session, user_id: str, notification_id: str) -> None:
    notification = db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == user_id,
        )
    ).scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification not found")
    db.delete(notification)
    db.commit()


def set_push_token(db: Session, user: User, token: str | None) -> None:
    user.fcm_token = token
    db.add(user)
    db.commit()
