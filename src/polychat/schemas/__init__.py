"""Pydantic schemas shared across the service."""

from .chat import Attachment, ChatStreamRequest, Conversation, Message
from .models import ModelDescriptor, ModelUpdate, ProviderKind

__all__ = [
    "Attachment",
    "ChatStreamRequest",
    "Conversation",
    "Message",
    "ModelDescriptor",
    "ModelUpdate",
    "ProviderKind",
]
