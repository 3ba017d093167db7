from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Literal, Optional

from config import MAX_MESSAGE_CHARS, MAX_MESSAGES


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)
    id: Optional[str] = Field(default=None, max_length=255, description="Client-side message id, used for idempotency")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(..., alias="threadId", min_length=1)
    model: str = Field(..., min_length=1)
    messages: List[ChatMessage] = Field(default_factory=list, max_length=MAX_MESSAGES)
    is_partial: bool = Field(default=False, alias="isPartial")
    partial_content: Optional[str] = Field(default=None, alias="partialContent", max_length=MAX_MESSAGE_CHARS)

    @model_validator(mode="after")
    def check_payload_for_mode(self) -> "ChatRequest":
        if self.is_partial:
            if not self.partial_content or not self.partial_content.strip():
                raise ValueError("partialContent is required when isPartial is set")
        elif not self.messages:
            raise ValueError("messages must contain at least one message")
        return self

    @property
    def last_user_message(self) -> Optional[ChatMessage]:
        """The trailing message, if it is a non-blank user message."""
        if not self.messages:
            return None
        last = self.messages[-1]
        if last.role == "user" and last.content.strip():
            return last
        return None
