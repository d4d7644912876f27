"""Firebase Cloud Messaging client used by the notification dispatcher."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

import firebase_admin
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging

from app.config import get_settings
from greconnect.errors import StaleRecipientTokenError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

_APP_NAME = "greconnect"


@dataclass(slots=True)
class PushMessage:
    """A single device notification."""

    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


def stringify_data(data: Mapping[str, Any] | None) -> dict[str, str]:
    """FCM data payloads only accept string values."""

    if not data:
        return {}
    return {str(key): "" if value is None else str(value) for key, value in data.items()}


class PushClient(Protocol):
    async def send(self, message: PushMessage) -> str:
        ...


class FirebasePushClient:
    """Send notifications through the Firebase Admin SDK.

    Raises :class:`StaleRecipientTokenError` when Firebase reports that the
    device token is unknown, unregistered or malformed, and
    :class:`UpstreamUnavailableError` for every other Firebase failure.
    """

    def __init__(self, credentials_path: Path) -> None:
        self._credentials_path = credentials_path
        self._app: firebase_admin.App | None = None

    def _ensure_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app(_APP_NAME)
        except ValueError:
            certificate = credentials.Certificate(str(self._credentials_path))
            self._app = firebase_admin.initialize_app(certificate, name=_APP_NAME)
            logger.info("Firebase Admin SDK initialized")
        return self._app

    @staticmethod
    def _build(message: PushMessage) -> messaging.Message:
        return messaging.Message(
            token=message.token,
            notification=messaging.Notification(title=message.title, body=message.body),
            data=message.data,
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    sound="default",
                    click_action="FLUTTER_NOTIFICATION_CLICK",
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
            ),
        )

    async def send(self, message: PushMessage) -> str:
        try:
            app = self._ensure_app()
        except (ValueError, OSError) as exc:
            raise UpstreamUnavailableError("Firebase is not configured") from exc
        try:
            return await asyncio.to_thread(messaging.send, self._build(message), app=app)
        except (
            messaging.UnregisteredError,
            messaging.SenderIdMismatchError,
            firebase_exceptions.InvalidArgumentError,
        ) as exc:
            raise StaleRecipientTokenError(str(exc)) from exc
        except firebase_exceptions.FirebaseError as exc:
            raise UpstreamUnavailableError(str(exc)) from exc


_client: FirebasePushClient | None = None


def get_push_client() -> PushClient | None:
    """Return the configured push client, or None when push is disabled."""

    global _client
    settings = get_settings()
    if not settings.push_notifications_enabled or settings.firebase_credentials_path is None:
        return None
    if _client is None:
        _client = FirebasePushClient(settings.firebase_credentials_path)
    return _client
