"""Chat session engine and its supporting types."""

from .events import (
    AssistantCompleted,
    AssistantDelta,
    AssistantDiscarded,
    ConversationStarted,
    MessageAppended,
    PersistenceWarning,
    SessionEvent,
    StateChanged,
    SubmissionFailed,
)
from .registry import SessionRegistry
from .session import SessionEngine, derive_title
from .state import SessionContext, SessionState, StreamState, SubmitResult
from .types import ConversationStore, StreamTransport

__all__ = [
    "AssistantCompleted",
    "AssistantDelta",
    "AssistantDiscarded",
    "ConversationStarted",
    "ConversationStore",
    "MessageAppended",
    "PersistenceWarning",
    "SessionContext",
    "SessionEngine",
    "SessionEvent",
    "SessionRegistry",
    "SessionState",
    "StateChanged",
    "StreamState",
    "StreamTransport",
    "SubmissionFailed",
    "SubmitResult",
    "derive_title",
]
