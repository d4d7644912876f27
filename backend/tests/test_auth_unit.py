"""Unit tests for token verification."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException

from app.api.deps import get_user_from_token
from app.core.security import create_access_token


def test_get_user_from_token(db_session, make_user):
    """Tokens should resolve to existing users."""

    user = make_user("tester")
    token = create_access_token({"sub": user.id})

    assert get_user_from_token(token, db_session).id == user.id


def test_legacy_id_claim_is_accepted(db_session, make_user):
    user = make_user("tester")
    token = create_access_token({"id": user.id})

    assert get_user_from_token(token, db_session).username == "tester"


@pytest.mark.parametrize(
    "claims",
    [{}, {"sub": "missing-user"}],
)
def test_unresolvable_tokens_are_rejected(db_session, claims):
    with pytest.raises(HTTPException) as exc:
        get_user_from_token(create_access_token(claims), db_session)

    assert exc.value.status_code == 401


def test_expired_token_is_rejected(db_session, make_user):
    user = make_user("tester")
    token = create_access_token({"sub": user.id}, expires_delta=timedelta(seconds=-1))

    with pytest.raises(HTTPException) as exc:
        get_user_from_token(token, db_session)

    assert exc.value.detail == "Token has expired"


def test_inactive_user_is_rejected(db_session, make_user):
    user = make_user("tester", is_active=False)

    with pytest.raises(HTTPException):
        get_user_from_token(create_access_token({"sub": user.id}), db_session)
