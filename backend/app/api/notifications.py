"""HTTP endpoints for the notification inbox and device push tokens."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import (
    FcmTokenUpdate,
    NotificationCreate,
    NotificationPage,
    NotificationRead,
    NotificationsMarkRead,
    UnreadCount,
)
from app.services import notifications as inbox
from app.services.notifications import NotificationDispatcher, get_notification_dispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])

settings = get_settings()


@router.get("", response_model=NotificationPage)
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.notification_page_size, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    items, total, unread = inbox.list_notifications(db, current_user.id, page=page, limit=limit)
    return {
        "notifications": [NotificationRead.model_validate(item) for item in items],
        "page": page,
        "total": total,
        "unreadCount": unread,
    }


@router.post("", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationRead:
    notification = inbox.create_notification(db, current_user, payload, dispatcher=dispatcher)
    return NotificationRead.model_validate(notification)


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int]:
    return {"count": inbox.unread_count(db, current_user.id)}


@router.post("/read")
def mark_read(
    payload: NotificationsMarkRead,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int]:
    return {"modifiedCount": inbox.mark_read(db, current_user.id, payload.notification_ids)}


@router.post("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int]:
    return {"modifiedCount": inbox.mark_all_read(db, current_user.id)}


@router.put("/fcm-token")
def update_fcm_token(
    payload: FcmTokenUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    inbox.set_push_token(db, current_user, payload.fcm_token)
    return {"message": "Push token updated"}


@router.delete("/fcm-token")
def remove_fcm_token(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    inbox.set_push_token(db, current_user, None)
    return {"message": "Push token removed"}


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    inbox.delete_notification(db, current_user.id, notification_id)
    return {"message": "Notification deleted"}
