"""Session and stream state owned by the session engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from ..errors import PersistenceError
from ..schemas.chat import Message
from ..schemas.models import ModelDescriptor
from ..sse import StreamDecoder


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_CONVERSATION = "awaiting_conversation"
    STREAMING = "streaming"


@dataclass
class SessionContext:
    """The active conversation as seen by one client session.

    Passed explicitly into the engine instead of living in module state.
    ``messages`` is the ordered history sent to providers and is only ever
    mutated by the engine.
    """

    model: ModelDescriptor
    conversation_id: str | None = None
    messages: list[Message] = field(default_factory=list)


@dataclass
class StreamState:
    """Ephemeral state of one in-flight response."""

    context: SessionContext
    assistant_message: Message
    decoder: StreamDecoder
    done: bool = False
    cancelled: bool = False
    task: asyncio.Task[bool] | None = field(default=None, repr=False)

    @property
    def decoder_buffer(self) -> str:
        return self.decoder.buffer

    def append(self, delta: str) -> None:
        if self.done:
            raise RuntimeError("Cannot append to a completed assistant message")
        self.assistant_message.content += delta

    def freeze(self) -> Message:
        self.done = True
        return self.assistant_message

    def detach(self) -> None:
        """Remove the partial assistant message from its conversation."""

        messages = self.context.messages
        for index in range(len(messages) - 1, -1, -1):
            if messages[index] is self.assistant_message:
                del messages[index]
                break


@dataclass
class SubmitResult:
    """Outcome of a completed or cancelled submission."""

    conversation_id: str | None
    user_message: Message
    assistant_message: Message | None = None
    persisted: bool = False
    cancelled: bool = False
    warnings: list[PersistenceError] = field(default_factory=list)


__all__ = [
    "SessionContext",
    "SessionState",
    "StreamState",
    "SubmitResult",
]
