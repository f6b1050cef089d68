"""Collaborator contracts for the chat session engine."""

from __future__ import annotations

from typing import AsyncContextManager, AsyncIterator, Protocol

from ..providers.base import ProviderRequest
from ..schemas.chat import Message


class ConversationStore(Protocol):
    async def create_conversation(self, title: str) -> str:
        ...

    async def append_message(self, conversation_id: str, message: Message) -> object:
        ...

    async def list_messages(self, conversation_id: str) -> list[Message]:
        ...

    async def delete_conversation(self, conversation_id: str) -> bool:
        ...


class StreamTransport(Protocol):
    def open_stream(
        self, request: ProviderRequest
    ) -> AsyncContextManager[AsyncIterator[bytes]]:
        ...


__all__ = ["ConversationStore", "StreamTransport"]
