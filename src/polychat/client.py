"""HTTP transport for streaming provider responses."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator

import httpx

from .config import Settings
from .errors import NetworkError, StreamInterruptedError
from .providers.base import ProviderRequest

logger = logging.getLogger(__name__)

_BAD_GATEWAY = 502
_GATEWAY_TIMEOUT = 504


class ProviderClient:
    """Open streaming POST requests against provider endpoints.

    HTTP clients are pooled per timeout profile and shared across
    instances; tests inject their own ``httpx.AsyncClient``.
    """

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[float, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[float, float]:
        return (
            float(self._settings.connect_timeout),
            float(self._settings.stream_idle_timeout),
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                # The read timeout doubles as the idle timeout between chunks.
                timeout = httpx.Timeout(
                    self._settings.stream_idle_timeout,
                    connect=self._settings.connect_timeout,
                )
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @asynccontextmanager
    async def open_stream(
        self, request: ProviderRequest
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Connect and yield the response body as an async byte iterator.

        Non-2xx responses and connection failures raise :class:`NetworkError`
        before anything is yielded. Failures while reading the body raise
        :class:`StreamInterruptedError` from the iterator.
        """

        client = await self._get_http_client()
        logger.debug(
            "Opening %s stream to %s",
            request.provider.value if request.provider else "provider",
            request.redacted_url(),
        )
        try:
            async with client.stream(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise NetworkError(response.status_code, detail)
                yield self._iter_bytes(response)
        except httpx.TimeoutException as exc:
            raise NetworkError(
                _GATEWAY_TIMEOUT, f"Timed out contacting provider: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(_BAD_GATEWAY, str(exc) or type(exc).__name__) from exc

    async def _iter_bytes(
        self, response: httpx.Response
    ) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.ReadTimeout as exc:
            raise StreamInterruptedError(
                "No data received for "
                f"{self._settings.stream_idle_timeout:g} seconds"
            ) from exc
        except httpx.HTTPError as exc:
            raise StreamInterruptedError(str(exc) or type(exc).__name__) from exc

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            return
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Provider returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            return error or payload
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            # Gemini wraps errors in a one-element array.
            return ProviderClient._extract_error_detail(json.dumps(payload[0]).encode())
        return payload


__all__ = ["ProviderClient"]
