"""Schemas for the notification inbox and device tokens."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from app.models.enums import NotificationType
from app.schemas.users import APIModel, UserSummary


class NotificationRead(APIModel):
    id: str
    recipient_id: str
    sender: UserSummary | None = None
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] | None = None
    route: str | None = None
    is_read: bool
    created_at: datetime


class NotificationPage(APIModel):
    notifications: list[NotificationRead]
    page: int
    total: int
    unread_count: int


class UnreadCount(APIModel):
    count: int


class NotificationsMarkRead(APIModel):
    notification_ids: list[str] = Field(..., min_length=1)


class FcmTokenUpdate(APIModel):
    fcm_token: str = Field(..., min_length=1, max_length=512)


class NotificationCreate(APIModel):
    recipient_id: str = Field(..., min_length=1)
    type: NotificationType = NotificationType.SYSTEM
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    data: dict[str, Any] | None = None
    route: str | None = Field(default=None, max_length=255)
