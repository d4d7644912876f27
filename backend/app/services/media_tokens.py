"""Media session tokens for the Agora real-time audio/video service."""

from __future__ import annotations

import logging
import time
from enum import IntEnum
from typing import Protocol

from agora_token_builder import RtcTokenBuilder

from app.config import get_settings
from greconnect.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class MediaRole(IntEnum):
    """Privilege levels understood by the Agora token builder."""

    PUBLISHER = 1
    SUBSCRIBER = 2


class MediaTokenIssuer(Protocol):
    """Issues time-limited tokens for a media channel."""

    app_id: str | None

    async def issue(self, channel_name: str, uid: int, role: MediaRole = MediaRole.PUBLISHER) -> str:
        ...


class AgoraTokenIssuer:
    """Build RTC tokens locally from the Agora app id and certificate."""

    def __init__(
        self,
        app_id: str | None,
        app_certificate: str | None,
        *,
        ttl_seconds: int = 3600,
    ) -> None:
        self.app_id = app_id
        self._app_certificate = app_certificate
        self._ttl_seconds = ttl_seconds

    async def issue(self, channel_name: str, uid: int, role: MediaRole = MediaRole.PUBLISHER) -> str:
        if not self.app_id or not self._app_certificate:
            raise UpstreamUnavailableError("Media service is not configured")
        expires_at = int(time.time()) + self._ttl_seconds
        try:
            token = RtcTokenBuilder.buildTokenWithUid(
                self.app_id,
                self._app_certificate,
                channel_name,
                uid,
                int(role),
                expires_at,
            )
        except (ValueError, TypeError) as exc:
            logger.exception("Failed to build media token for channel %s", channel_name)
            raise UpstreamUnavailableError("Could not issue media token") from exc
        if not token:
            raise UpstreamUnavailableError("Could not issue media token")
        return token


_issuer: AgoraTokenIssuer | None = None


def get_media_token_issuer() -> MediaTokenIssuer:
    global _issuer
    if _issuer is None:
        settings = get_settings()
        _issuer = AgoraTokenIssuer(
            settings.agora_app_id,
            settings.agora_app_certificate,
            ttl_seconds=settings.agora_token_ttl_seconds,
        )
    return _issuer
