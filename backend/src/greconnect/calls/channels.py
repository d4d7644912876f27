"""Deterministic identifiers shared with the external media service."""

from __future__ import annotations

import hashlib

CHANNEL_PREFIX = "conversation_"
UID_SUFFIX_LENGTH = 8
# Largest signed 32-bit integer; also a Mersenne prime.
UID_MODULUS = 2**31 - 1


def derive_channel_name(conversation_id: str) -> str:
    """Return the media channel every participant of a conversation joins.

    The name depends only on the conversation, so two concurrent calls in one
    conversation share a channel.
    """

    return f"{CHANNEL_PREFIX}{conversation_id}"


def derive_media_uid(user_id: str) -> int:
    """Map a user id onto the positive integer range the media service accepts.

    The last eight hex characters of the id are read as a base-16 number and
    reduced modulo ``2**31 - 1``. Ids whose suffix is not hex are hashed with
    SHA-1 first. The mapping is stable but not injective: with ``n`` users the
    chance of any collision is roughly ``n**2 / 2**32``, about 0.2% at 3,000
    users.
    """

    text = str(user_id)
    suffix = text[-UID_SUFFIX_LENGTH:]
    try:
        value = int(suffix, 16)
    except ValueError:
        value = int(hashlib.sha1(text.encode("utf-8")).hexdigest()[-UID_SUFFIX_LENGTH:], 16)
    value %= UID_MODULUS
    return value or 1


__all__ = ["CHANNEL_PREFIX", "UID_MODULUS", "derive_channel_name", "derive_media_uid"]
