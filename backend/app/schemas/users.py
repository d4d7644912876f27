"""Schemas describing users embedded in other payloads."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class APIModel(BaseModel):
    """Base model emitting camelCase keys while accepting snake_case too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserSummary(APIModel):
    """Public profile fields shown next to messages and calls."""

    id: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    profile_picture: str | None = None
