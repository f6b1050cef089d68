"""Keep one session engine per client session."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping

from ..credentials import CredentialSource
from ..providers.base import ProviderAdapter
from ..schemas.models import ModelDescriptor, ProviderKind
from .session import SessionEngine, UrlResolver
from .state import SessionContext, SessionState
from .types import ConversationStore, StreamTransport

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Create and look up :class:`SessionEngine` instances by session id.

    Engines live in memory only. Idle engines are evicted once they have
    not been used for ``idle_ttl`` seconds, or least recently used first
    when more than ``max_sessions`` exist. An engine that is still
    streaming is never evicted; a client whose session was evicted resumes
    by passing its conversation id again.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: StreamTransport,
        adapters: Mapping[ProviderKind, ProviderAdapter],
        credentials: CredentialSource,
        *,
        title_length: int = 50,
        max_sessions: int = 1000,
        idle_ttl: float | None = 3600.0,
        resolve_attachment_url: UrlResolver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._transport = transport
        self._adapters = dict(adapters)
        self._credentials = credentials
        self._title_length = title_length
        self._max_sessions = max_sessions
        self._idle_ttl = idle_ttl
        self._resolve_attachment_url = resolve_attachment_url
        self._clock = clock
        self._sessions: OrderedDict[str, SessionEngine] = OrderedDict()
        self._last_used: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> SessionEngine | None:
        engine = self._sessions.get(session_id)
        if engine is not None:
            self._touch(session_id)
        return engine

    def get_or_create(self, session_id: str, model: ModelDescriptor) -> SessionEngine:
        engine = self.get(session_id)
        if engine is not None:
            return engine
        self.evict_idle()
        engine = SessionEngine(
            self._store,
            self._transport,
            self._adapters,
            self._credentials,
            context=SessionContext(model=model),
            title_length=self._title_length,
            resolve_attachment_url=self._resolve_attachment_url,
        )
        self._sessions[session_id] = engine
        self._touch(session_id)
        logger.debug("Created chat session %s using %s", session_id, model.model_id)
        return engine

    def _touch(self, session_id: str) -> None:
        self._sessions.move_to_end(session_id)
        self._last_used[session_id] = self._clock()

    def evict_idle(self) -> int:
        """Drop expired idle engines and make room for one more session."""

        now = self._clock()
        remaining = len(self._sessions)
        evicted: list[str] = []
        # Oldest first
        for session_id, engine in self._sessions.items():
            if engine.state is not SessionState.IDLE:
                continue
            expired = (
                self._idle_ttl is not None
                and now - self._last_used[session_id] >= self._idle_ttl
            )
            if expired or remaining >= self._max_sessions:
                evicted.append(session_id)
                remaining -= 1
        for session_id in evicted:
            del self._sessions[session_id]
            del self._last_used[session_id]
        if evicted:
            logger.info("Evicted %d idle chat session(s)", len(evicted))
        return len(evicted)

    def forget_conversation(self, conversation_id: str) -> int:
        """Detach every session still showing a deleted conversation."""

        detached = 0
        for engine in self._sessions.values():
            if engine.conversation_id == conversation_id:
                engine.new_conversation()
                detached += 1
        return detached

    def cancel_all(self) -> int:
        cancelled = 0
        for engine in self._sessions.values():
            if engine.cancel():
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d in-flight chat stream(s)", cancelled)
        return cancelled

    def clear(self) -> None:
        self.cancel_all()
        self._sessions.clear()
        self._last_used.clear()


__all__ = ["SessionRegistry"]
