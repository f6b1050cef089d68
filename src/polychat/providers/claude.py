"""Anthropic Messages API streaming adapter."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..schemas.chat import Message
from ..schemas.models import ModelDescriptor, ProviderKind
from .base import ProviderAdapter, ProviderRequest, dig

_CONTENT_DELTA = "content_block_delta"
_TEXT_DELTA = "text_delta"
_MESSAGE_STOP = "message_stop"


class ClaudeAdapter(ProviderAdapter):
    """Translate conversations to the Anthropic Messages wire format.

    The stream interleaves ``message_start``, ``content_block_start``,
    ``ping``, ``content_block_delta``, ``content_block_stop``,
    ``message_delta`` and ``message_stop`` events. Only text deltas carry
    output; ``message_stop`` is the graceful end of the response.
    """

    kind = ProviderKind.CLAUDE

    def __init__(self, base_url: str, *, api_version: str, max_tokens: int):
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._max_tokens = max_tokens

    def build_request(
        self,
        model: ModelDescriptor,
        api_key: str,
        history: Sequence[Message],
    ) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self._base_url}/messages",
            headers={
                "x-api-key": api_key,
                "anthropic-version": self._api_version,
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            body={
                "model": model.model_id,
                "messages": [self._format_message(message) for message in history],
                "max_tokens": self._max_tokens,
                "stream": True,
            },
            provider=self.kind,
        )

    @staticmethod
    def _format_message(message: Message) -> dict[str, Any]:
        if message.role != "user" or message.attachment is None:
            return {"role": message.role, "content": message.content}

        blocks: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "url", "url": message.attachment.url},
            }
        ]
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return {"role": message.role, "content": blocks}

    def extract_delta(self, payload: Any) -> str | None:
        if dig(payload, "type") != _CONTENT_DELTA:
            return None
        delta_type = dig(payload, "delta", "type")
        if delta_type is not None and delta_type != _TEXT_DELTA:
            return None
        text = dig(payload, "delta", "text")
        if isinstance(text, str) and text:
            return text
        return None

    def is_final_event(self, payload: Any) -> bool:
        return dig(payload, "type") == _MESSAGE_STOP

    def extract_error(self, payload: Any) -> str | None:
        if dig(payload, "type") != "error":
            return None
        return super().extract_error(payload) or "Claude reported an error"


__all__ = ["ClaudeAdapter"]
