"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
from typing import Any, Callable, Iterator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REALTIME_REDIS_URL", "")

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import database
from app.core.security import create_access_token
from app.database import get_db
from app.main import app
from app.models import Base, Conversation, ConversationParticipant, ConversationType, User
from app.services.media_tokens import MediaRole, get_media_token_issuer
from app.services.notifications import NotificationDispatcher, get_notification_dispatcher
from app.services.push import PushMessage


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)


class FakeTokenIssuer:
    app_id = "test-app"

    def __init__(self) -> None:
        self.issued: list[tuple[str, int, MediaRole]] = []

    async def issue(self, channel_name: str, uid: int, role: MediaRole = MediaRole.PUBLISHER) -> str:
        self.issued.append((channel_name, uid, role))
        return f"token-{channel_name}-{uid}"


class FakePushClient:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent: list[PushMessage] = []
        self.fail_with = fail_with

    async def send(self, message: PushMessage) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
        return f"projects/test/messages/{len(self.sent)}"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine, monkeypatch) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine.

    Websocket handlers and background notification tasks open their own
    sessions through ``app.database``; they share the same engine.
    """

    factory = sessionmaker(bind=test_engine, future=True)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def token_issuer() -> FakeTokenIssuer:
    return FakeTokenIssuer()


@pytest.fixture()
def push_client() -> FakePushClient:
    return FakePushClient()


@pytest.fixture()
def notification_dispatcher(push_client) -> NotificationDispatcher:
    return NotificationDispatcher(push_client, min_token_length=50)


@pytest.fixture()
def client(session_factory, token_issuer, notification_dispatcher) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database and collaborators overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_media_token_issuer] = lambda: token_issuer
    app.dependency_overrides[get_notification_dispatcher] = lambda: notification_dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    counter = {"value": 0}

    def factory(username: str | None = None, **fields: Any) -> User:
        counter["value"] += 1
        name = username or f"user{counter['value']}"
        user = User(username=name, first_name=name.title(), email=f"{name}@example.com", **fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def make_conversation(db_session) -> Callable[..., Conversation]:
    def factory(*users: User, type: ConversationType | None = None, name: str | None = None) -> Conversation:
        kind = type or (ConversationType.DIRECT if len(users) == 2 else ConversationType.GROUP)
        conversation = Conversation(type=kind, name=name)
        conversation.participants = [ConversationParticipant(user_id=user.id) for user in users]
        db_session.add(conversation)
        db_session.commit()
        db_session.refresh(conversation)
        return conversation

    return factory


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}
