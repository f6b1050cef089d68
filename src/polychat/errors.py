"""Error taxonomy shared by the chat engine, providers, and routers."""

from __future__ import annotations

from typing import Any


class ChatEngineError(RuntimeError):
    """Base class for every failure surfaced by the chat engine."""


class ConfigError(ChatEngineError):
    """Missing credential or unusable model selection.

    Raised before any network traffic; resubmitting without fixing the
    configuration fails the same way.
    """


class NetworkError(ChatEngineError):
    """Wrap transport or API failures when talking to a provider."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class StreamInterruptedError(NetworkError):
    """The response stream stopped before the provider signalled its end."""

    def __init__(self, detail: Any = "Stream ended before completion"):
        super().__init__(502, detail)


class StreamParseError(ChatEngineError):
    """A single SSE event could not be decoded."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"{reason}: {line[:200]!r}")
        self.line = line
        self.reason = reason


class PersistenceError(ChatEngineError):
    """A conversation store operation failed.

    The in-memory conversation stays authoritative; callers are told the
    exchange may not have been saved.
    """

    def __init__(self, operation: str, conversation_id: str | None, cause: Exception):
        target = conversation_id or "<new conversation>"
        super().__init__(f"{operation} failed for {target}: {cause}")
        self.operation = operation
        self.conversation_id = conversation_id
        self.__cause__ = cause


class SessionBusyError(ChatEngineError):
    """A submission arrived while a response is still streaming."""


__all__ = [
    "ChatEngineError",
    "ConfigError",
    "NetworkError",
    "PersistenceError",
    "SessionBusyError",
    "StreamInterruptedError",
    "StreamParseError",
]
