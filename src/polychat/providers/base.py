"""Shared contract for provider-specific request/response translation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..schemas.chat import Message
from ..schemas.models import ModelDescriptor, ProviderKind

_SECRET_QUERY_KEYS = frozenset({"key", "api_key"})


@dataclass(frozen=True)
class ProviderRequest:
    """Everything needed to open one streaming HTTP call."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    method: str = "POST"
    provider: ProviderKind | None = field(default=None, compare=False)

    def redacted_url(self) -> str:
        """Return the URL with credential query parameters masked."""

        parts = urlsplit(self.url)
        if not parts.query:
            return self.url
        query = [
            (key, "***" if key in _SECRET_QUERY_KEYS else value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
        ]
        return urlunsplit(parts._replace(query=urlencode(query)))


def dig(payload: Any, *path: str | int) -> Any:
    """Walk nested mappings/sequences, returning ``None`` on any mismatch."""

    current = payload
    for step in path:
        if isinstance(step, int):
            if (
                not isinstance(current, Sequence)
                or isinstance(current, (str, bytes))
                or not -len(current) <= step < len(current)
            ):
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


class ProviderAdapter(ABC):
    """Translate between the engine's message model and one vendor wire format.

    Adapters are stateless and pure: ``build_request`` only shapes data and
    ``extract_delta`` never raises, answering ``None`` for anything that is
    not a text fragment.
    """

    kind: ClassVar[ProviderKind]
    # Raw ``data:`` value that terminates the stream, when the vendor sends one.
    end_sentinel: ClassVar[str | None] = None

    @abstractmethod
    def build_request(
        self,
        model: ModelDescriptor,
        api_key: str,
        history: Sequence[Message],
    ) -> ProviderRequest:
        """Return the endpoint, headers, and body for a streamed completion."""

    @abstractmethod
    def extract_delta(self, payload: Any) -> str | None:
        """Return the text fragment carried by one decoded event, if any."""

    def is_final_event(self, payload: Any) -> bool:
        """Return True when the event marks a graceful end of the response."""

        return False

    def extract_error(self, payload: Any) -> str | None:
        """Return an error description when the event reports a provider failure."""

        error = dig(payload, "error")
        if error is None:
            return None
        if isinstance(error, Mapping):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
            return str(dict(error))
        return str(error)


__all__ = ["ProviderAdapter", "ProviderRequest", "dig"]
