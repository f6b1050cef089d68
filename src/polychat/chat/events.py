"""Notifications published by the session engine to its observers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from ..errors import ChatEngineError, NetworkError, PersistenceError
from ..schemas.chat import Message
from .state import SessionState


@dataclass
class SessionEvent:
    """Base for all session events."""

    name: ClassVar[str] = "event"

    def as_payload(self) -> dict[str, Any]:
        return {}


@dataclass
class StateChanged(SessionEvent):
    name: ClassVar[str] = "state"

    state: SessionState
    error: ChatEngineError | None = None

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"state": self.state.value}
        if self.error is not None:
            payload["error"] = str(self.error)
        return payload


@dataclass
class ConversationStarted(SessionEvent):
    """A conversation was created for the first message of a session."""

    name: ClassVar[str] = "conversation"

    conversation_id: str
    title: str

    def as_payload(self) -> dict[str, Any]:
        return {"conversation_id": self.conversation_id, "title": self.title}


@dataclass
class MessageAppended(SessionEvent):
    name: ClassVar[str] = "message"

    conversation_id: str | None
    message: Message

    def as_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "message": self.message.to_record(),
        }


@dataclass
class AssistantDelta(SessionEvent):
    """One text fragment appended to the in-flight assistant message."""

    name: ClassVar[str] = "delta"

    conversation_id: str | None
    delta: str
    message: Message

    def as_payload(self) -> dict[str, Any]:
        return {"conversation_id": self.conversation_id, "delta": self.delta}


@dataclass
class AssistantCompleted(SessionEvent):
    name: ClassVar[str] = "completed"

    conversation_id: str | None
    message: Message
    persisted: bool

    def as_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "message": self.message.to_record(),
            "persisted": self.persisted,
        }


@dataclass
class AssistantDiscarded(SessionEvent):
    """The partial assistant message was dropped without being stored."""

    name: ClassVar[str] = "discarded"

    conversation_id: str | None
    reason: str

    def as_payload(self) -> dict[str, Any]:
        return {"conversation_id": self.conversation_id, "reason": self.reason}


@dataclass
class PersistenceWarning(SessionEvent):
    name: ClassVar[str] = "warning"

    error: PersistenceError

    def as_payload(self) -> dict[str, Any]:
        return {
            "operation": self.error.operation,
            "conversation_id": self.error.conversation_id,
            "detail": str(self.error),
        }


@dataclass
class SubmissionFailed(SessionEvent):
    name: ClassVar[str] = "error"

    error: ChatEngineError

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": type(self.error).__name__,
            "detail": str(self.error),
        }
        if isinstance(self.error, NetworkError):
            payload["status_code"] = self.error.status_code
        return payload


__all__ = [
    "AssistantCompleted",
    "AssistantDelta",
    "AssistantDiscarded",
    "ConversationStarted",
    "MessageAppended",
    "PersistenceWarning",
    "SessionEvent",
    "StateChanged",
    "SubmissionFailed",
]
