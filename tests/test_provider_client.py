from __future__ import annotations

import httpx
import pytest

from polychat.client import ProviderClient
from polychat.config import Settings
from polychat.errors import NetworkError
from polychat.providers.base import ProviderRequest
from polychat.schemas.models import ProviderKind

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _request() -> ProviderRequest:
    return ProviderRequest(
        url="https://gemini.test/v1beta/models/m:streamGenerateContent?alt=sse&key=k",
        headers={"Content-Type": "application/json"},
        body={"contents": []},
        provider=ProviderKind.GEMINI,
    )


async def test_open_stream_yields_body_bytes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"data: {}\n\n")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ProviderClient(Settings(), http_client=http)
        async with client.open_stream(_request()) as body:
            received = b"".join([chunk async for chunk in body])

    assert received == b"data: {}\n\n"
    assert seen[0].method == "POST"
    assert seen[0].url.params["key"] == "k"


async def test_gemini_error_array_is_unwrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json=[{"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}}],
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ProviderClient(Settings(), http_client=http)
        with pytest.raises(NetworkError) as excinfo:
            async with client.open_stream(_request()):
                pass

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == "API key not valid"


async def test_connect_timeout_maps_to_gateway_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("too slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ProviderClient(Settings(), http_client=http)
        with pytest.raises(NetworkError) as excinfo:
            async with client.open_stream(_request()):
                pass

    assert excinfo.value.status_code == 504


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (b"", "Provider returned an empty error response."),
        (b"upstream exploded", "upstream exploded"),
        (b'{"error": {"message": "quota"}}', "quota"),
        (b'{"error": "bad"}', "bad"),
    ],
)
def test_extract_error_detail(raw: bytes, expected: str) -> None:
    assert ProviderClient._extract_error_detail(raw) == expected


async def test_shared_pool_reuses_client_per_timeout_profile() -> None:
    settings = Settings(connect_timeout=2, stream_idle_timeout=30)
    try:
        first = await ProviderClient(settings)._get_http_client()
        second = await ProviderClient(settings)._get_http_client()
        assert first is second
        assert first.timeout.read == 30
        assert first.timeout.connect == 2
    finally:
        await ProviderClient.aclose_shared()
