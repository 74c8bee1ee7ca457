from pydantic import BaseModel, Field

from recruit_chat.schemas._types import UTCDateTime


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=10_000)


class MessagePublic(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: UTCDateTime
    read_at: UTCDateTime | None = None

    class Config:
        from_attributes = True
