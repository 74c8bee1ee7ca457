from typing import Literal

from pydantic import BaseModel, EmailStr

from recruit_chat.schemas._types import UTCDateTime

Role = Literal["athlete", "coach"]


class UserPublic(BaseModel):
    id: int
    email: EmailStr
    role: Role
    first_name: str | None = None
    last_name: str | None = None
    profile_photo_url: str | None = None
    created_at: UTCDateTime

    class Config:
        from_attributes = True


class CounterpartPublic(BaseModel):
    """The other participant of a conversation, as shown in the list."""

    id: int
    first_name: str | None = None
    last_name: str | None = None
    profile_photo_url: str | None = None
    role: Role

    class Config:
        from_attributes = True
