"""Conversation-level state machine driving one streamed exchange at a time.

``submit`` walks ``Idle -> AwaitingConversation -> Streaming -> Idle``.
The user message is stored before the provider is called; the assistant
message is stored once, after the provider confirmed a graceful end of
its stream. A dropped connection, idle timeout, provider error event, or
cancellation discards the partial assistant text instead of persisting a
truncated answer. A graceful end without any text is discarded too.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator

from ..credentials import CredentialSource
from ..errors import (
    ChatEngineError,
    ConfigError,
    NetworkError,
    PersistenceError,
    SessionBusyError,
    StreamInterruptedError,
)
from ..providers.base import ProviderAdapter
from ..schemas.chat import Attachment, Message
from ..schemas.models import ModelDescriptor, ProviderKind
from ..sse import StreamDecoder
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
from .state import SessionContext, SessionState, StreamState, SubmitResult
from .types import ConversationStore, StreamTransport

logger = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], None]
UrlResolver = Callable[[str], Awaitable[str]]

IMAGE_ONLY_TITLE = "Image"
UNTITLED = "New conversation"


def derive_title(text: str, *, has_attachment: bool = False, limit: int = 50) -> str:
    """Build a conversation title from the first user message."""

    cleaned = " ".join(text.split())
    if not cleaned:
        return IMAGE_ONLY_TITLE if has_attachment else UNTITLED
    if len(cleaned) > limit:
        return cleaned[:limit] + "..."
    return cleaned


@dataclass
class _Turn:
    """Token for one submission; outlives the engine's interest in it on cancel."""

    context: SessionContext
    conversation_id: str | None = None
    cancelled: bool = False
    stream: StreamState | None = None


class SessionEngine:
    """Own the message list of one session and drive provider streams into it.

    At most one submission is active at a time; a second ``submit`` while
    one is in flight is rejected with :class:`SessionBusyError`.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: StreamTransport,
        adapters: Mapping[ProviderKind, ProviderAdapter],
        credentials: CredentialSource,
        *,
        context: SessionContext,
        title_length: int = 50,
        resolve_attachment_url: UrlResolver | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._adapters = dict(adapters)
        self._credentials = credentials
        self._context = context
        self._title_length = title_length
        self._resolve_attachment_url = resolve_attachment_url
        self._state = SessionState.IDLE
        self._turn: _Turn | None = None
        self._listeners: list[Listener] = []
        self.last_error: ChatEngineError | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def model(self) -> ModelDescriptor:
        return self._context.model

    @property
    def conversation_id(self) -> str | None:
        return self._context.conversation_id

    @property
    def messages(self) -> tuple[Message, ...]:
        """Snapshot of the visible conversation, in order."""

        return tuple(self._context.messages)

    @property
    def stream_state(self) -> StreamState | None:
        if self._turn is None:
            return None
        return self._turn.stream

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for session events; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover - listener bugs are logged only
                logger.exception("Session listener failed on %s event", event.name)

    def _set_state(
        self, state: SessionState, error: ChatEngineError | None = None
    ) -> None:
        self._state = state
        self._publish(StateChanged(state=state, error=error))

    def _is_current(self, turn: _Turn) -> bool:
        return self._turn is turn

    def _finish(self, turn: _Turn, error: ChatEngineError | None = None) -> None:
        if not self._is_current(turn):
            return
        self._turn = None
        self._set_state(SessionState.IDLE, error)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def select_model(self, model: ModelDescriptor) -> None:
        """Switch the model used by the next submission."""

        if not model.enabled:
            raise ConfigError(f"Model is disabled: {model.model_id}")
        if model.provider not in self._adapters:
            raise ConfigError(f"No adapter registered for provider {model.provider.value}")
        self._context.model = model

    def new_conversation(self) -> None:
        """Detach from the current conversation; the next submit creates one."""

        self.cancel()
        self._context = SessionContext(model=self._context.model)

    async def open_conversation(self, conversation_id: str) -> tuple[Message, ...]:
        """Load a stored conversation and make it the active one."""

        self.cancel()
        try:
            messages = await self._store.list_messages(conversation_id)
        except Exception as exc:
            raise PersistenceError("list_messages", conversation_id, exc) from exc
        self._context = SessionContext(
            model=self._context.model,
            conversation_id=conversation_id,
            messages=list(messages),
        )
        return self.messages

    def cancel(self) -> bool:
        """Stop the in-flight submission, dropping any partial answer.

        The engine returns to ``Idle`` immediately; the cancelled turn
        unwinds on its own without touching later submissions.
        """

        turn = self._turn
        if turn is None:
            return False
        turn.cancelled = True
        stream = turn.stream
        if stream is not None:
            stream.cancelled = True
            if stream.task is not None and not stream.task.done():
                stream.task.cancel()
            self._abort_stream(stream, "cancelled")
        self._finish(turn)
        return True

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self, text: str, attachment: Attachment | None = None
    ) -> SubmitResult | None:
        """Send a user turn and stream the assistant reply into the session.

        Returns ``None`` when there is nothing to send. Raises
        :class:`SessionBusyError` while another submission is active,
        :class:`ConfigError` when the provider cannot be used, and
        :class:`NetworkError` (including :class:`StreamInterruptedError`)
        when the exchange fails; the engine is back in ``Idle`` either way.
        """

        if not text.strip() and attachment is None:
            return None
        if self._turn is not None:
            raise SessionBusyError("A response is still streaming for this session")

        model = self._context.model
        adapter = self._adapters.get(model.provider)
        if adapter is None:
            raise self._report(
                ConfigError(f"No adapter registered for provider {model.provider.value}")
            )
        api_key = self._credentials.get_api_key(model.provider)
        if api_key is None:
            raise self._report(
                ConfigError(f"Missing API key for provider {model.provider.value}")
            )

        turn = _Turn(context=self._context)
        self._turn = turn
        self.last_error = None
        self._set_state(SessionState.AWAITING_CONVERSATION)

        user_message = Message(role="user", content=text, attachment=attachment)
        result = SubmitResult(conversation_id=None, user_message=user_message)
        try:
            await self._run_turn(turn, model, adapter, api_key, result)
        except ChatEngineError as exc:
            if self._is_current(turn):
                self._finish(turn, self._report(exc))
            raise
        except BaseException:
            # Cancellation of the caller or an unexpected failure.
            if turn.stream is not None:
                self._abort_stream(turn.stream, "cancelled")
            self._finish(turn)
            raise
        return result

    async def _run_turn(
        self,
        turn: _Turn,
        model: ModelDescriptor,
        adapter: ProviderAdapter,
        api_key: str,
        result: SubmitResult,
    ) -> None:
        context = turn.context
        user_message = result.user_message
        turn.conversation_id = context.conversation_id
        if turn.conversation_id is None:
            title = derive_title(
                user_message.content,
                has_attachment=user_message.attachment is not None,
                limit=self._title_length,
            )
            conversation_id = await self._create_conversation(title, result.warnings)
            if turn.cancelled:
                result.cancelled = True
                await self._drop_orphan(conversation_id)
                return
            if conversation_id is not None:
                turn.conversation_id = context.conversation_id = conversation_id
                self._publish(
                    ConversationStarted(conversation_id=conversation_id, title=title)
                )
        result.conversation_id = turn.conversation_id

        context.messages.append(user_message)
        self._publish(
            MessageAppended(conversation_id=turn.conversation_id, message=user_message)
        )
        await self._persist(turn.conversation_id, user_message, result.warnings)
        if turn.cancelled:
            result.cancelled = True
            return

        history = await self._build_history(context.messages)
        if turn.cancelled:
            result.cancelled = True
            return
        request = adapter.build_request(model, api_key, history)
        logger.info(
            "Submitting %d message(s) to %s model %s",
            len(history),
            model.provider.value,
            model.model_id,
        )
        async with self._transport.open_stream(request) as body:
            if turn.cancelled:
                result.cancelled = True
                return
            await self._stream_reply(turn, adapter, body, result)

    async def _create_conversation(
        self, title: str, warnings: list[PersistenceError]
    ) -> str | None:
        try:
            return await self._store.create_conversation(title)
        except Exception as exc:
            self._warn(PersistenceError("create_conversation", None, exc), warnings)
            return None

    async def _drop_orphan(self, conversation_id: str | None) -> None:
        """Remove a conversation created for a turn that was cancelled meanwhile."""

        if conversation_id is None:
            return
        try:
            await self._store.delete_conversation(conversation_id)
        except Exception as exc:
            logger.warning(
                "Could not remove empty conversation %s: %s", conversation_id, exc
            )

    async def _build_history(self, messages: Sequence[Message]) -> list[Message]:
        """Return the provider-facing history in order, without empty assistant turns."""

        history: list[Message] = []
        for message in list(messages):
            if message.role == "assistant" and not message.content:
                continue
            attachment = message.attachment
            if attachment is not None and self._resolve_attachment_url is not None:
                url = await self._resolve_attachment_url(attachment.url)
                if url != attachment.url:
                    message = message.model_copy(
                        update={"attachment": Attachment(url=url)}
                    )
            history.append(message)
        return history

    async def _stream_reply(
        self,
        turn: _Turn,
        adapter: ProviderAdapter,
        body: AsyncIterator[bytes],
        result: SubmitResult,
    ) -> None:
        context = turn.context
        stream = StreamState(
            context=context,
            assistant_message=Message(role="assistant", content=""),
            decoder=StreamDecoder(end_sentinel=adapter.end_sentinel),
        )
        turn.stream = stream
        context.messages.append(stream.assistant_message)
        self._set_state(SessionState.STREAMING)

        stream.task = asyncio.create_task(self._consume(stream, adapter, body))
        try:
            graceful = await stream.task
        except asyncio.CancelledError:
            if not stream.cancelled:
                raise
            graceful = False
        except ChatEngineError:
            self._abort_stream(stream, "failed")
            raise

        if stream.cancelled:
            result.cancelled = True
            return

        if not graceful:
            self._abort_stream(stream, "interrupted")
            raise StreamInterruptedError(
                "Connection closed before the provider finished its response"
            )

        if not stream.assistant_message.content:
            logger.warning(
                "Provider finished without any text for conversation %s",
                turn.conversation_id,
            )
            self._abort_stream(stream, "empty")
            self._finish(turn)
            return

        message = stream.freeze()
        result.assistant_message = message
        result.persisted = await self._persist(
            turn.conversation_id, message, result.warnings
        )
        logger.info(
            "Assistant reply complete (%d chars) for conversation %s",
            len(message.content),
            turn.conversation_id,
        )
        self._publish(
            AssistantCompleted(
                conversation_id=turn.conversation_id,
                message=message,
                persisted=result.persisted,
            )
        )
        self._finish(turn)

    async def _consume(
        self,
        stream: StreamState,
        adapter: ProviderAdapter,
        body: AsyncIterator[bytes],
    ) -> bool:
        """Apply deltas in arrival order; return True on a graceful end."""

        async with aclosing(stream.decoder.iter_payloads(body)) as payloads:
            async for payload in payloads:
                error = adapter.extract_error(payload)
                if error is not None:
                    raise NetworkError(502, error)
                delta = adapter.extract_delta(payload)
                if delta:
                    stream.append(delta)
                    self._publish(
                        AssistantDelta(
                            conversation_id=stream.context.conversation_id,
                            delta=delta,
                            message=stream.assistant_message,
                        )
                    )
                if adapter.is_final_event(payload):
                    return True
        return stream.decoder.done

    def _abort_stream(self, stream: StreamState, reason: str) -> None:
        if stream.done:
            return
        stream.done = True
        stream.detach()
        logger.info(
            "Discarding partial assistant reply (%s, %d chars) for conversation %s",
            reason,
            len(stream.assistant_message.content),
            stream.context.conversation_id,
        )
        self._publish(
            AssistantDiscarded(
                conversation_id=stream.context.conversation_id, reason=reason
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _persist(
        self,
        conversation_id: str | None,
        message: Message,
        warnings: list[PersistenceError],
    ) -> bool:
        if conversation_id is None:
            self._warn(
                PersistenceError(
                    "append_message", None, RuntimeError("conversation was not created")
                ),
                warnings,
            )
            return False
        try:
            await self._store.append_message(conversation_id, message)
        except Exception as exc:
            self._warn(PersistenceError("append_message", conversation_id, exc), warnings)
            return False
        return True

    def _warn(self, error: PersistenceError, warnings: list[PersistenceError]) -> None:
        logger.warning("%s", error)
        warnings.append(error)
        self._publish(PersistenceWarning(error=error))

    def _report(self, error: ChatEngineError) -> ChatEngineError:
        self.last_error = error
        if isinstance(error, NetworkError):
            logger.warning("Chat submission failed (%s): %s", error.status_code, error)
        else:
            logger.warning("Chat submission failed: %s", error)
        self._publish(SubmissionFailed(error=error))
        return error


__all__ = ["IMAGE_ONLY_TITLE", "SessionEngine", "UrlResolver", "derive_title"]
