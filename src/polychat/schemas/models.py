"""Pydantic models describing selectable chat models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(str, Enum):
    """Wire protocol family a model is served through."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"


class ModelDescriptor(BaseModel):
    """A selectable model and the provider that serves it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    model_id: str = Field(alias="modelId", min_length=1)
    provider: ProviderKind
    display_name: str = Field(alias="displayName")
    enabled: bool = True


class ModelUpdate(BaseModel):
    """Payload for toggling a model in the catalog."""

    enabled: bool


__all__ = ["ModelDescriptor", "ModelUpdate", "ProviderKind"]
