"""Routes for browsing and deleting stored conversations."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..chat import SessionRegistry
from ..repository import ChatRepository
from ..schemas.chat import Conversation, ConversationMessages
from .chat import get_registry, get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("", response_model=list[Conversation])
async def list_conversations(
    repository: ChatRepository = Depends(get_repository),
) -> list[Conversation]:
    """Return stored conversations, newest first."""

    return await repository.list_conversations()


@router.get("/{conversation_id}/messages", response_model=ConversationMessages)
async def get_conversation_messages(
    conversation_id: str,
    repository: ChatRepository = Depends(get_repository),
) -> ConversationMessages:
    conversation = await repository.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await repository.list_messages(conversation_id)
    return ConversationMessages(conversation=conversation, messages=messages)


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    repository: ChatRepository = Depends(get_repository),
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    deleted = await repository.delete_conversation(conversation_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    detached = registry.forget_conversation(conversation_id)
    logger.info(
        "Deleted conversation %s (%d session(s) detached)", conversation_id, detached
    )
    return Response(status_code=204)


__all__ = ["router"]
