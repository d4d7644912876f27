from __future__ import annotations

import uuid

from sqlalchemy.orm import DeclarativeBase


def generate_id() -> str:
    """Return a new opaque 32 character hex identifier."""

    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""
