"""Google Gemini ``streamGenerateContent`` adapter."""

from __future__ import annotations

import mimetypes
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote, urlencode, urlsplit

from ..schemas.chat import Message
from ..schemas.models import ModelDescriptor, ProviderKind
from .base import ProviderAdapter, ProviderRequest, dig

_ROLE_MAP = {"user": "user", "assistant": "model"}
_DEFAULT_IMAGE_MIME = "image/jpeg"
# Finish reasons that end a response without a usable answer.
_BLOCKED_FINISH_REASONS = frozenset(
    {
        "SAFETY",
        "RECITATION",
        "BLOCKLIST",
        "PROHIBITED_CONTENT",
        "SPII",
        "IMAGE_SAFETY",
    }
)


def _guess_image_mime(url: str) -> str:
    path = urlsplit(url).path
    mime_type, _ = mimetypes.guess_type(path)
    if mime_type and mime_type.startswith("image/"):
        return mime_type
    return _DEFAULT_IMAGE_MIME


class GeminiAdapter(ProviderAdapter):
    """Key-in-query auth, ``contents``/``parts`` bodies, ``model`` role.

    Gemini sends no sentinel event: a candidate carrying ``finishReason``
    is the last chunk of a completed response.
    """

    kind = ProviderKind.GEMINI

    def __init__(self, base_url: str, *, max_output_tokens: int):
        self._base_url = base_url.rstrip("/")
        self._max_output_tokens = max_output_tokens

    def build_request(
        self,
        model: ModelDescriptor,
        api_key: str,
        history: Sequence[Message],
    ) -> ProviderRequest:
        query = urlencode({"alt": "sse", "key": api_key})
        model_path = quote(model.model_id, safe="-._")
        return ProviderRequest(
            url=f"{self._base_url}/models/{model_path}:streamGenerateContent?{query}",
            headers={
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            body={
                "contents": [self._format_message(message) for message in history],
                "generationConfig": {"maxOutputTokens": self._max_output_tokens},
            },
            provider=self.kind,
        )

    @staticmethod
    def _format_message(message: Message) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if message.content or message.attachment is None:
            parts.append({"text": message.content})
        if message.role == "user" and message.attachment is not None:
            url = message.attachment.url
            parts.append(
                {"file_data": {"mime_type": _guess_image_mime(url), "file_uri": url}}
            )
        return {"role": _ROLE_MAP[message.role], "parts": parts}

    def extract_delta(self, payload: Any) -> str | None:
        parts = dig(payload, "candidates", 0, "content", "parts")
        if not isinstance(parts, list):
            return None
        fragments = [
            text
            for text in (dig(part, "text") for part in parts)
            if isinstance(text, str)
        ]
        text = "".join(fragments)
        return text or None

    def is_final_event(self, payload: Any) -> bool:
        return bool(dig(payload, "candidates", 0, "finishReason"))

    def extract_error(self, payload: Any) -> str | None:
        error = super().extract_error(payload)
        if error is not None:
            return error
        block_reason = dig(payload, "promptFeedback", "blockReason")
        if isinstance(block_reason, str) and block_reason:
            return f"Prompt blocked by Gemini ({block_reason})"
        finish_reason = dig(payload, "candidates", 0, "finishReason")
        if finish_reason in _BLOCKED_FINISH_REASONS:
            return f"Response blocked by Gemini ({finish_reason})"
        return None


__all__ = ["GeminiAdapter"]
