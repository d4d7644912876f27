"""HTTP endpoints for audio and video calls."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_call_service, get_current_user
from app.database import get_db
from app.models import User
from app.schemas import (
    ActiveCallResponse,
    CallDeclineResponse,
    CallInitiate,
    CallRead,
    CallResponse,
    CallSession,
)
from app.services.calls import CallService

router = APIRouter(prefix="/calls", tags=["calls"])


@router.post("/initiate", response_model=CallSession, status_code=status.HTTP_201_CREATED)
async def initiate_call(
    payload: CallInitiate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.initiate(db, current_user, payload)


@router.post("/{call_id}/join", response_model=CallSession)
async def join_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.join(db, current_user, call_id)


@router.post("/{call_id}/end", response_model=CallResponse)
async def end_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.end(db, current_user, call_id)


@router.post("/{call_id}/leave", response_model=CallResponse)
async def leave_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.leave(db, current_user, call_id)


@router.post("/{call_id}/decline", response_model=CallDeclineResponse)
async def decline_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.decline(db, current_user, call_id)


@router.get("/history/{conversation_id}", response_model=list[CallRead])
def call_history(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> list[dict[str, Any]]:
    return calls.history(db, current_user, conversation_id)


@router.get("/active/{conversation_id}", response_model=ActiveCallResponse)
async def active_call(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    calls: CallService = Depends(get_call_service),
) -> dict[str, Any]:
    return await calls.active(db, current_user, conversation_id)
