from __future__ import annotations

import json
from collections.abc import Callable, Generator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from polychat.app import create_app
from polychat.config import Settings


class FakeBlobStore:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.uploads: list[tuple[bytes, str]] = []

    def is_available(self) -> bool:
        return self.available

    async def upload(self, data: bytes, content_type: str) -> str:
        self.uploads.append((data, content_type))
        return f"https://blobs.test/{len(self.uploads)}.png"

    async def refresh_url(self, url: str) -> str:
        return url


class Provider:
    """Mock provider endpoint answering every call with the next queued body."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def reply(self, *deltas: str) -> None:
        chunks = [
            f"data: {json.dumps({'choices': [{'delta': {'content': delta}}]})}\n\n"
            for delta in deltas
        ]
        chunks.append("data: [DONE]\n\n")
        self.responses.append(
            httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content="".join(chunks).encode(),
            )
        )


def _parse_sse(text: str) -> list[tuple[str, Any]]:
    events: list[tuple[str, Any]] = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        name = None
        data: list[str] = []
        for line in block.split("\n"):
            if line.startswith("event:"):
                name = line[len("event:") :].strip()
            elif line.startswith("data:"):
                data.append(line[len("data:") :].strip())
        if name and data:
            events.append((name, json.loads("\n".join(data))))
    return events


@pytest.fixture
def provider() -> Provider:
    return Provider()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def make_client(
    tmp_path, provider: Provider, blob_store: FakeBlobStore
) -> Generator[Callable[..., TestClient], None, None]:
    clients: list[TestClient] = []

    def _make(**overrides: Any) -> TestClient:
        options: dict[str, Any] = {
            "chat_database_path": tmp_path / "chat.db",
            "openai_api_key": SecretStr("sk-test"),
            "anthropic_api_key": None,
            "gemini_api_key": None,
        }
        options.update(overrides)
        settings = Settings(_env_file=None, **options)
        http = httpx.AsyncClient(transport=httpx.MockTransport(provider))
        app = create_app(settings, http_client=http, blob_store=blob_store)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def _chat(client: TestClient, **payload: Any) -> list[tuple[str, Any]]:
    response = client.post("/api/chat/stream", json=payload)
    assert response.status_code == 200, response.text
    return _parse_sse(response.text)


def test_stream_chat_emits_session_events(client: TestClient, provider: Provider) -> None:
    provider.reply("Hi", " there", "!")

    events = _chat(client, session_id="s1", text="Hello")

    names = [name for name, _ in events]
    assert names[0] == "state"
    assert "conversation" in names
    assert [data["delta"] for name, data in events if name == "delta"] == ["Hi", " there", "!"]
    completed = [data for name, data in events if name == "completed"]
    assert completed[0]["message"] == {"role": "assistant", "content": "Hi there!"}
    assert completed[0]["persisted"] is True
    done = events[-1]
    assert done[0] == "done"
    assert done[1]["persisted"] is True

    conversations = client.get("/api/conversations").json()
    assert [c["title"] for c in conversations] == ["Hello"]
    messages = client.get(f"/api/conversations/{conversations[0]['id']}/messages").json()
    assert [m["content"] for m in messages["messages"]] == ["Hello", "Hi there!"]


def test_follow_up_in_same_session_sends_history(client: TestClient, provider: Provider) -> None:
    provider.reply("Hi")
    provider.reply("Sure")

    _chat(client, session_id="s1", text="Hello")
    _chat(client, session_id="s1", text="More please")

    body = json.loads(provider.requests[1].content)
    assert [m["content"] for m in body["messages"]] == ["Hello", "Hi", "More please"]
    assert len(client.get("/api/conversations").json()) == 1


def test_new_session_can_resume_stored_conversation(client: TestClient, provider: Provider) -> None:
    provider.reply("Hi")
    provider.reply("Welcome back")

    first = _chat(client, session_id="s1", text="Hello")
    conversation_id = next(data for name, data in first if name == "done")["conversation_id"]
    _chat(client, session_id="s2", text="Again", conversation_id=conversation_id)

    body = json.loads(provider.requests[1].content)
    assert [m["content"] for m in body["messages"]] == ["Hello", "Hi", "Again"]


def test_missing_credential_is_streamed_as_error(client: TestClient, provider: Provider) -> None:
    events = _chat(client, session_id="s1", text="Hello", model_id="gemini-1.5-pro")

    errors = [data for name, data in events if name == "error"]
    assert errors and errors[0]["type"] == "ConfigError"
    assert provider.requests == []
    assert client.get("/api/conversations").json() == []


def test_provider_rejection_is_streamed_as_error(client: TestClient, provider: Provider) -> None:
    provider.responses.append(httpx.Response(429, json={"error": {"message": "Rate limited"}}))

    events = _chat(client, session_id="s1", text="Hello")

    errors = [data for name, data in events if name == "error"]
    assert errors[0]["status_code"] == 429
    assert errors[0]["detail"] == "Rate limited"
    assert events[-1][0] == "state"
    assert events[-1][1]["state"] == "idle"


def test_invalid_requests_are_rejected(client: TestClient) -> None:
    assert client.post("/api/chat/stream", json={"session_id": "s1", "text": "  "}).status_code == 400
    response = client.post(
        "/api/chat/stream", json={"session_id": "s1", "text": "hi", "model_id": "gpt-99"}
    )
    assert response.status_code == 400
    assert "Unknown model" in response.json()["detail"]
    response = client.post(
        "/api/chat/stream",
        json={"session_id": "s1", "text": "hi", "conversation_id": "missing"},
    )
    assert response.status_code == 404


def test_cancel_endpoint(client: TestClient, provider: Provider) -> None:
    assert client.post("/api/chat/unknown/cancel").status_code == 404

    provider.reply("Hi")
    _chat(client, session_id="s1", text="Hello")

    response = client.post("/api/chat/s1/cancel")
    assert response.status_code == 200
    assert response.json() == {"cancelled": False}


def test_model_catalog_endpoints(client: TestClient) -> None:
    models = client.get("/api/models").json()
    ids = {model["modelId"] for model in models}
    assert {"gpt-4o-mini", "claude-3-5-sonnet-20240620", "gemini-1.5-pro"} <= ids

    response = client.patch("/api/models/gpt-4", json={"enabled": False})
    assert response.status_code == 200
    assert response.json()["enabled"] is False

    enabled = {m["modelId"] for m in client.get("/api/models", params={"enabled_only": True}).json()}
    assert "gpt-4" not in enabled
    assert client.patch("/api/models/gpt-99", json={"enabled": True}).status_code == 404

    response = client.post(
        "/api/chat/stream", json={"session_id": "s1", "text": "hi", "model_id": "gpt-4"}
    )
    assert response.status_code == 400
    assert "disabled" in response.json()["detail"]


def test_delete_conversation(client: TestClient, provider: Provider) -> None:
    provider.reply("Hi")
    events = _chat(client, session_id="s1", text="Hello")
    conversation_id = events[-1][1]["conversation_id"]

    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 204
    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 404
    assert client.get(f"/api/conversations/{conversation_id}/messages").status_code == 404

    provider.reply("Fresh start")
    _chat(client, session_id="s1", text="Next")
    body = json.loads(provider.requests[1].content)
    assert [m["content"] for m in body["messages"]] == ["Next"]


def _png() -> bytes:
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def test_upload_image(client: TestClient, blob_store: FakeBlobStore) -> None:
    response = client.post(
        "/api/uploads", files={"file": ("pixel.png", _png(), "image/png")}
    )

    assert response.status_code == 201
    assert response.json() == {"attachment": {"url": "https://blobs.test/1.png"}}
    assert blob_store.uploads == [(_png(), "image/png")]


def test_upload_rejects_unsupported_type(client: TestClient) -> None:
    response = client.post(
        "/api/uploads", files={"file": ("notes.txt", b"hello", "text/plain")}
    )

    assert response.status_code == 415
    assert "Unsupported attachment type" in response.json()["detail"]


def test_upload_rejects_large_files(make_client) -> None:
    client = make_client(attachments_max_size_bytes=8)

    response = client.post(
        "/api/uploads", files={"file": ("pixel.png", _png(), "image/png")}
    )

    assert response.status_code == 413


def test_upload_unavailable_without_storage(client: TestClient, blob_store: FakeBlobStore) -> None:
    blob_store.available = False

    response = client.post(
        "/api/uploads", files={"file": ("pixel.png", _png(), "image/png")}
    )

    assert response.status_code == 503


def test_image_message_is_sent_to_provider(client: TestClient, provider: Provider) -> None:
    provider.reply("A cat")

    events = _chat(
        client,
        session_id="s1",
        text="",
        attachment_url="https://blobs.test/1.png",
    )

    body = json.loads(provider.requests[0].content)
    assert body["messages"][0]["content"] == [
        {"type": "image_url", "image_url": {"url": "https://blobs.test/1.png"}}
    ]
    started = next(data for name, data in events if name == "conversation")
    assert started["title"] == "Image"


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["default_model"] == "gpt-4o-mini"
