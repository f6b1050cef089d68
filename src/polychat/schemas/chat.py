"""Pydantic models for messages, conversations, and chat requests."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant"]


class Attachment(BaseModel):
    """Reference to an uploaded image, fetchable by the provider."""

    url: str = Field(min_length=1)


class Message(BaseModel):
    """One turn of a conversation.

    Instances are treated as immutable once stored; only the assistant
    message of an in-flight stream has its ``content`` extended.
    """

    role: Role
    content: str = ""
    attachment: Optional[Attachment] = None

    def to_record(self) -> dict[str, object]:
        payload: dict[str, object] = {"role": self.role, "content": self.content}
        if self.attachment is not None:
            payload["attachment"] = {"url": self.attachment.url}
        return payload


class Conversation(BaseModel):
    """Stored conversation header."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class ChatStreamRequest(BaseModel):
    """Request body for ``POST /api/chat/stream``."""

    session_id: str = Field(min_length=1)
    model_id: Optional[str] = None
    conversation_id: Optional[str] = None
    text: str = ""
    attachment_url: Optional[str] = None

    @field_validator("attachment_url")
    @classmethod
    def _blank_url_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def attachment(self) -> Optional[Attachment]:
        if self.attachment_url is None:
            return None
        return Attachment(url=self.attachment_url)


class ConversationMessages(BaseModel):
    conversation: Conversation
    messages: list[Message]


__all__ = [
    "Attachment",
    "ChatStreamRequest",
    "Conversation",
    "ConversationMessages",
    "Message",
    "Role",
]
