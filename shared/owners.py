"""Cart ownership: a signed-in user or an anonymous session, never both."""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UserOwner(BaseModel):
    """Cart owned by an authenticated user."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)

    def __str__(self) -> str:
        return f"user:{self.user_id}"


class GuestOwner(BaseModel):
    """Cart owned by an anonymous shopper's session id."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)

    def __str__(self) -> str:
        return f"guest:{self.session_id}"


Owner = Union[UserOwner, GuestOwner]


def owner_from_ids(user_id: Optional[str], session_id: Optional[str]) -> Owner:
    """Resolve request identifiers to an owner; a user id takes precedence."""
    if user_id:
        return UserOwner(user_id=user_id)
    if session_id:
        return GuestOwner(session_id=session_id)
    raise ValueError("Either a user id or a session id is required")
