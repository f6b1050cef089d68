"""Provider adapters keyed by wire protocol."""

from __future__ import annotations

from ..config import Settings
from ..schemas.models import ProviderKind
from .base import ProviderAdapter, ProviderRequest
from .claude import ClaudeAdapter
from .gemini import GeminiAdapter
from .openai import OpenAIAdapter


def build_adapters(settings: Settings) -> dict[ProviderKind, ProviderAdapter]:
    """Instantiate one adapter per provider from configuration."""

    return {
        ProviderKind.OPENAI: OpenAIAdapter(str(settings.openai_base_url)),
        ProviderKind.CLAUDE: ClaudeAdapter(
            str(settings.anthropic_base_url),
            api_version=settings.anthropic_version,
            max_tokens=settings.claude_max_tokens,
        ),
        ProviderKind.GEMINI: GeminiAdapter(
            str(settings.gemini_base_url),
            max_output_tokens=settings.gemini_max_output_tokens,
        ),
    }


__all__ = [
    "ClaudeAdapter",
    "GeminiAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderRequest",
    "build_adapters",
]
