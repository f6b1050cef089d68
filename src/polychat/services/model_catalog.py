"""Catalog of selectable models persisted in the model_settings table."""

from __future__ import annotations

import logging

from ..errors import ConfigError
from ..repository import ChatRepository
from ..schemas.models import ModelDescriptor, ProviderKind

logger = logging.getLogger(__name__)


DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(model_id="gpt-4o-mini", provider=ProviderKind.OPENAI, display_name="GPT-4o mini"),
    ModelDescriptor(model_id="gpt-4o", provider=ProviderKind.OPENAI, display_name="GPT-4o"),
    ModelDescriptor(model_id="gpt-4", provider=ProviderKind.OPENAI, display_name="GPT-4"),
    ModelDescriptor(model_id="gpt-3.5-turbo", provider=ProviderKind.OPENAI, display_name="GPT-3.5 Turbo"),
    ModelDescriptor(model_id="o1-mini", provider=ProviderKind.OPENAI, display_name="o1-mini"),
    ModelDescriptor(
        model_id="claude-3-5-sonnet-20240620",
        provider=ProviderKind.CLAUDE,
        display_name="Claude 3.5 Sonnet",
    ),
    ModelDescriptor(
        model_id="claude-3-sonnet-20240229",
        provider=ProviderKind.CLAUDE,
        display_name="Claude 3 Sonnet",
    ),
    ModelDescriptor(model_id="gemini-1.5-pro", provider=ProviderKind.GEMINI, display_name="Gemini 1.5 Pro"),
    ModelDescriptor(model_id="gemini-1.5-flash", provider=ProviderKind.GEMINI, display_name="Gemini 1.5 Flash"),
)


class ModelCatalog:
    """Read and toggle the models users may select."""

    def __init__(self, repository: ChatRepository) -> None:
        self._repo = repository

    async def seed_defaults(
        self, defaults: tuple[ModelDescriptor, ...] = DEFAULT_MODELS
    ) -> int:
        added = await self._repo.insert_model_settings(list(defaults))
        if added:
            logger.info("Seeded %d default model(s)", added)
        return added

    async def list_models(self, *, enabled_only: bool = False) -> list[ModelDescriptor]:
        models = await self._repo.list_model_settings()
        if enabled_only:
            return [model for model in models if model.enabled]
        return models

    async def get_model(self, model_id: str) -> ModelDescriptor | None:
        return await self._repo.get_model_setting(model_id)

    async def require(self, model_id: str) -> ModelDescriptor:
        """Return a selectable descriptor or raise :class:`ConfigError`."""

        descriptor = await self.get_model(model_id)
        if descriptor is None:
            raise ConfigError(f"Unknown model: {model_id}")
        if not descriptor.enabled:
            raise ConfigError(f"Model is disabled: {model_id}")
        return descriptor

    async def set_enabled(self, model_id: str, enabled: bool) -> ModelDescriptor | None:
        updated = await self._repo.set_model_enabled(model_id, enabled)
        if not updated:
            return None
        logger.info("Model %s %s", model_id, "enabled" if enabled else "disabled")
        return await self.get_model(model_id)


__all__ = ["DEFAULT_MODELS", "ModelCatalog"]
