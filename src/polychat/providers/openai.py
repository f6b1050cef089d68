"""OpenAI chat-completions streaming adapter."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..schemas.chat import Message
from ..schemas.models import ModelDescriptor, ProviderKind
from .base import ProviderAdapter, ProviderRequest, dig


class OpenAIAdapter(ProviderAdapter):
    """Bearer-token auth, ``choices[0].delta.content`` deltas, ``[DONE]`` sentinel."""

    kind = ProviderKind.OPENAI
    end_sentinel = "[DONE]"

    def __init__(self, base_url: str):
        self._base_url = base_url.rstrip("/")

    def build_request(
        self,
        model: ModelDescriptor,
        api_key: str,
        history: Sequence[Message],
    ) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self._base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            body={
                "model": model.model_id,
                "messages": [self._format_message(message) for message in history],
                "stream": True,
            },
            provider=self.kind,
        )

    @staticmethod
    def _format_message(message: Message) -> dict[str, Any]:
        if message.role != "user" or message.attachment is None:
            return {"role": message.role, "content": message.content}

        parts: list[dict[str, Any]] = []
        if message.content:
            parts.append({"type": "text", "text": message.content})
        parts.append(
            {"type": "image_url", "image_url": {"url": message.attachment.url}}
        )
        return {"role": message.role, "content": parts}

    def extract_delta(self, payload: Any) -> str | None:
        content = dig(payload, "choices", 0, "delta", "content")
        if isinstance(content, str) and content:
            return content
        return None


__all__ = ["OpenAIAdapter"]
