"""Per-provider API key lookup."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Optional, Protocol

from pydantic import SecretStr

from .config import Settings
from .schemas.models import ProviderKind


class CredentialSource(Protocol):
    def get_api_key(self, provider: ProviderKind) -> Optional[str]:
        """Return the key for ``provider`` or ``None`` when it is missing."""
        ...


def _reveal(secret: SecretStr | None) -> Optional[str]:
    if secret is None:
        return None
    value = secret.get_secret_value().strip()
    return value or None


class SettingsCredentialSource:
    """Read provider keys from application settings."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def get_api_key(self, provider: ProviderKind) -> Optional[str]:
        if provider is ProviderKind.OPENAI:
            return _reveal(self._settings.openai_api_key)
        if provider is ProviderKind.CLAUDE:
            return _reveal(self._settings.anthropic_api_key)
        if provider is ProviderKind.GEMINI:
            return _reveal(self._settings.gemini_api_key)
        return None


class StaticCredentialSource:
    """Fixed keys, useful for embedding and tests."""

    def __init__(self, keys: Mapping[ProviderKind, str | None]):
        self._keys = dict(keys)

    def get_api_key(self, provider: ProviderKind) -> Optional[str]:
        value = self._keys.get(provider)
        if value is None:
            return None
        return value.strip() or None


__all__ = ["CredentialSource", "SettingsCredentialSource", "StaticCredentialSource"]
