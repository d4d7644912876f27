"""Domain error taxonomy shared by the REST and websocket layers."""

from __future__ import annotations


class GreConnectError(Exception):
    """Base class for errors surfaced to API and socket callers."""

    code: str = "error"
    status_code: int = 400

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotFoundError(GreConnectError):
    """Conversation, call, message or notification does not exist."""

    code = "not_found"
    status_code = 404


class ForbiddenError(GreConnectError):
    """Caller lacks the relationship required for the operation."""

    code = "forbidden"
    status_code = 403


class InvalidStateError(GreConnectError):
    """Operation is not allowed from the current call state."""

    code = "invalid_state"
    status_code = 400


class ValidationError(GreConnectError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 422


class UpstreamUnavailableError(GreConnectError):
    """An external collaborator (media tokens, push) failed."""

    code = "upstream_unavailable"
    status_code = 503


class StaleRecipientTokenError(UpstreamUnavailableError):
    """Push provider rejected the stored device token as invalid or expired."""

    code = "stale_recipient_token"


__all__ = [
    "GreConnectError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidStateError",
    "ValidationError",
    "UpstreamUnavailableError",
    "StaleRecipientTokenError",
]
