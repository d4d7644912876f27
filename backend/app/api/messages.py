"""HTTP endpoints for managing chat messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import MarkReadRequest, MarkReadResponse, MessageCreate, MessageRead
from app.services import messages as message_service
from app.services.notifications import NotificationDispatcher, get_notification_dispatcher

router = APIRouter(prefix="/messages", tags=["messages"])

settings = get_settings()


@router.post("", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> dict[str, Any]:
    message = await message_service.send_message(db, current_user, payload, dispatcher=dispatcher)
    return message_service.serialize_message(message)


@router.post("/read", response_model=MarkReadResponse)
async def mark_messages_read(
    payload: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    readable, added = await message_service.mark_as_read(
        db, current_user.id, payload.message_ids, payload.conversation_id
    )
    return {"messageIds": readable, "modifiedCount": added}


@router.get("/{conversation_id}", response_model=list[MessageRead])
def list_messages(
    conversation_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1),
    before: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict[str, Any]]:
    messages = message_service.list_messages(
        db, current_user.id, conversation_id, limit=limit, before=before
    )
    return [message_service.serialize_message(message) for message in messages]


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    await message_service.delete_message(db, current_user.id, message_id)
    return {"message": "Message deleted"}
