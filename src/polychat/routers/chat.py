"""Chat streaming API routes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..chat import SessionEngine, SessionEvent, SessionRegistry, SessionState
from ..config import Settings, get_settings
from ..errors import ChatEngineError, ConfigError, PersistenceError, SessionBusyError
from ..repository import ChatRepository
from ..schemas.chat import ChatStreamRequest
from ..services.model_catalog import ModelCatalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "session_registry", None)
    if registry is None:
        raise HTTPException(status_code=500, detail="Session registry unavailable")
    return registry


def get_catalog(request: Request) -> ModelCatalog:
    catalog = getattr(request.app.state, "model_catalog", None)
    if catalog is None:
        raise HTTPException(status_code=500, detail="Model catalog unavailable")
    return catalog


def get_repository(request: Request) -> ChatRepository:
    repository = getattr(request.app.state, "chat_repository", None)
    if repository is None:
        raise HTTPException(status_code=500, detail="Chat repository unavailable")
    return repository


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def _format_event(event: SessionEvent) -> dict[str, str]:
    return {"event": event.name, "data": json.dumps(event.as_payload())}


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, ChatEngineError):
        logger.error("Chat submission crashed", exc_info=exc)


async def _prepare_engine(
    payload: ChatStreamRequest,
    registry: SessionRegistry,
    catalog: ModelCatalog,
    repository: ChatRepository,
    settings: Settings,
) -> SessionEngine:
    engine = registry.get(payload.session_id)
    if engine is not None and engine.state is not SessionState.IDLE:
        raise HTTPException(
            status_code=409, detail="A response is still streaming for this session"
        )

    try:
        if engine is None:
            model = await catalog.require(payload.model_id or settings.default_model)
            engine = registry.get_or_create(payload.session_id, model)
        elif payload.model_id and payload.model_id != engine.model.model_id:
            engine.select_model(await catalog.require(payload.model_id))
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    conversation_id = payload.conversation_id
    if conversation_id and conversation_id != engine.conversation_id:
        if await repository.get_conversation(conversation_id) is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        try:
            await engine.open_conversation(conversation_id)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
    return engine


@router.post("/stream", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatStreamRequest,
    registry: SessionRegistry = Depends(get_registry),
    catalog: ModelCatalog = Depends(get_catalog),
    repository: ChatRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> EventSourceResponse:
    """Submit one user turn and stream session events as Server-Sent Events."""

    attachment = payload.attachment()
    if not payload.text.strip() and attachment is None:
        raise HTTPException(
            status_code=400, detail="Message text or an image attachment is required"
        )

    engine = await _prepare_engine(payload, registry, catalog, repository, settings)
    queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()

    async def event_publisher():
        unsubscribe = engine.subscribe(queue.put_nowait)
        task = asyncio.create_task(engine.submit(payload.text, attachment))
        task.add_done_callback(_log_task_failure)
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _format_event(event)

            try:
                result = task.result()
            except SessionBusyError as exc:
                yield {
                    "event": "error",
                    "data": json.dumps(
                        {"type": type(exc).__name__, "detail": str(exc)}
                    ),
                }
                return
            except ChatEngineError:
                # Already delivered as an ``error`` event by the engine.
                return

            if result is not None:
                yield {
                    "event": "done",
                    "data": json.dumps(
                        {
                            "conversation_id": result.conversation_id,
                            "persisted": result.persisted,
                            "cancelled": result.cancelled,
                            "warnings": [str(w) for w in result.warnings],
                        }
                    ),
                }
        finally:
            unsubscribe()
            if not task.done():
                logger.info(
                    "Client for session %s disconnected mid-stream", payload.session_id
                )
                engine.cancel()

    return EventSourceResponse(event_publisher())


@router.post("/{session_id}/cancel")
async def cancel_chat(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, bool]:
    engine = registry.get(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"cancelled": engine.cancel()}


__all__ = ["get_catalog", "get_registry", "get_repository", "router"]
