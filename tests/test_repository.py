from __future__ import annotations

import sqlite3

import pytest

from polychat.repository import ChatRepository
from polychat.schemas.chat import Attachment, Message
from polychat.schemas.models import ModelDescriptor, ProviderKind


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "nested" / "chat.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_messages_roundtrip_in_insertion_order(repository):
    conversation_id = await repository.create_conversation("Hello")
    stored = [
        Message(role="user", content="Hello"),
        Message(role="assistant", content="Hi there!"),
        Message(
            role="user",
            content="",
            attachment=Attachment(url="https://cdn.example.com/cat.png"),
        ),
        Message(role="assistant", content="A cat."),
    ]

    for message in stored:
        await repository.append_message(conversation_id, message)

    assert await repository.list_messages(conversation_id) == stored


@pytest.mark.anyio
async def test_messages_are_scoped_to_conversation(repository):
    first = await repository.create_conversation("first")
    second = await repository.create_conversation("second")

    await repository.append_message(first, Message(role="user", content="one"))
    await repository.append_message(second, Message(role="user", content="two"))

    assert [m.content for m in await repository.list_messages(first)] == ["one"]
    assert [m.content for m in await repository.list_messages(second)] == ["two"]


@pytest.mark.anyio
async def test_conversation_listing_and_lookup(repository):
    older = await repository.create_conversation("older")
    newer = await repository.create_conversation("newer")

    conversations = await repository.list_conversations()

    assert [c.id for c in conversations] == [newer, older]
    fetched = await repository.get_conversation(older)
    assert fetched is not None
    assert fetched.title == "older"
    assert fetched.created_at is not None and fetched.created_at.endswith("+00:00")
    assert await repository.get_conversation("missing") is None


@pytest.mark.anyio
async def test_delete_conversation_cascades_messages(repository):
    conversation_id = await repository.create_conversation("bye")
    await repository.append_message(conversation_id, Message(role="user", content="x"))

    assert await repository.delete_conversation(conversation_id) is True
    assert await repository.get_conversation(conversation_id) is None
    assert await repository.list_messages(conversation_id) == []
    assert await repository.delete_conversation(conversation_id) is False


@pytest.mark.anyio
async def test_append_to_unknown_conversation_fails(repository):
    with pytest.raises(sqlite3.IntegrityError):
        await repository.append_message("missing", Message(role="user", content="x"))


@pytest.mark.anyio
async def test_model_settings_insert_is_idempotent(repository):
    descriptors = [
        ModelDescriptor(model_id="gpt-4o", provider=ProviderKind.OPENAI, display_name="GPT-4o"),
        ModelDescriptor(
            model_id="claude-3-sonnet-20240229",
            provider=ProviderKind.CLAUDE,
            display_name="Claude 3 Sonnet",
            enabled=False,
        ),
    ]

    assert await repository.insert_model_settings(descriptors) == 2
    assert await repository.insert_model_settings(descriptors) == 0

    stored = {d.model_id: d for d in await repository.list_model_settings()}
    assert stored["gpt-4o"].enabled is True
    assert stored["claude-3-sonnet-20240229"].enabled is False
    assert stored["claude-3-sonnet-20240229"].provider is ProviderKind.CLAUDE


@pytest.mark.anyio
async def test_set_model_enabled(repository):
    await repository.insert_model_settings(
        [ModelDescriptor(model_id="o1-mini", provider=ProviderKind.OPENAI, display_name="o1-mini")]
    )

    assert await repository.set_model_enabled("o1-mini", False) is True
    descriptor = await repository.get_model_setting("o1-mini")
    assert descriptor is not None and descriptor.enabled is False
    assert await repository.set_model_enabled("unknown", True) is False
