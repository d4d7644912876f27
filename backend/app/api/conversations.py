"""HTTP endpoints for direct and group conversations."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas import ConversationCreate, ConversationRead
from app.services import conversations as conversation_service

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationRead])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict[str, Any]]:
    conversations = conversation_service.list_conversations(db, current_user.id)
    return [conversation_service.serialize_conversation(item) for item in conversations]


@router.post("", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
def create_conversation(
    payload: ConversationCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    conversation, created = conversation_service.create_conversation(db, current_user, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return conversation_service.serialize_conversation(conversation)


@router.get("/search", response_model=list[ConversationRead])
def search_conversations(
    query: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict[str, Any]]:
    conversations = conversation_service.search_conversations(db, current_user.id, query)
    return [conversation_service.serialize_conversation(item) for item in conversations]


@router.get("/{conversation_id}", response_model=ConversationRead)
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    conversation = conversation_service.get_conversation_for(db, conversation_id, current_user.id)
    return conversation_service.serialize_conversation(conversation)


@router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, str]:
    conversation_service.delete_conversation(db, current_user.id, conversation_id)
    return {"message": "Conversation deleted"}
