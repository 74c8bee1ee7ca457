from typing import Literal

from pydantic import BaseModel, Field, model_validator


class RealtimeCommand(BaseModel):
    """Client frame on the live socket."""

    action: Literal["subscribe", "unsubscribe"]
    channel: str = Field(..., min_length=1, max_length=64)
    conversation_id: int | None = None
    conversation_ids: list[int] | None = None

    @model_validator(mode="after")
    def check_filter(self):
        if self.action == "subscribe":
            if (self.conversation_id is None) == (self.conversation_ids is None):
                raise ValueError(
                    "subscribe needs exactly one of conversation_id or conversation_ids"
                )
        return self
