from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from common.ids import generate_id

DEFAULT_TITLE = "New Chat"

Role = Literal["user", "assistant"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    id: str = Field(default_factory=generate_id)
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    id: str = Field(default_factory=generate_id)
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


class StoreSnapshot(BaseModel):
    chats: list[ChatSession] = Field(default_factory=list)
    current_chat_id: str | None = None
