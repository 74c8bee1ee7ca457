from pydantic import BaseModel

from recruit_chat.schemas._types import UTCDateTime
from recruit_chat.schemas.message import MessagePublic
from recruit_chat.schemas.user import CounterpartPublic


class ConversationCreate(BaseModel):
    counterpart_id: int


class ConversationRef(BaseModel):
    id: int


class ConversationPublic(BaseModel):
    id: int
    participant_a: int
    participant_b: int
    last_message_at: UTCDateTime | None = None

    class Config:
        from_attributes = True


class ConversationSummary(BaseModel):
    conversation: ConversationPublic
    counterpart: CounterpartPublic
    last_message: MessagePublic | None = None
