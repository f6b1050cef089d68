"""SQLite-backed conversation store and model catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

from .schemas.chat import Attachment, Conversation, Message
from .schemas.models import ModelDescriptor, ProviderKind


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def _row_to_conversation(row: aiosqlite.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        title=row["title"],
        created_at=_normalize_db_timestamp(row["created_at"]),
    )


def _row_to_descriptor(row: aiosqlite.Row) -> ModelDescriptor:
    return ModelDescriptor(
        model_id=row["model_id"],
        provider=ProviderKind(row["provider"]),
        display_name=row["model_name"],
        enabled=bool(row["enabled"]),
    )


class ChatRepository:
    """Persist conversations, their ordered messages, and model settings."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                image_url TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS model_settings (
                model_id TEXT PRIMARY KEY,
                model_name TEXT NOT NULL,
                provider TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(self, title: str) -> str:
        """Insert a conversation and return its identifier."""

        assert self._connection is not None
        conversation_id = uuid4().hex
        await self._connection.execute(
            "INSERT INTO conversations(id, title) VALUES (?, ?)",
            (conversation_id, title),
        )
        await self._connection.commit()
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT id, title, created_at FROM conversations WHERE id = ? LIMIT 1",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _row_to_conversation(row)

    async def list_conversations(self) -> list[Conversation]:
        """Return conversations, most recent first."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, title, created_at
            FROM conversations
            ORDER BY created_at DESC, rowid DESC
            """
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_row_to_conversation(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation together with its messages."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,)
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(self, conversation_id: str, message: Message) -> int:
        """Persist a single message at the end of the conversation."""

        assert self._connection is not None
        image_url = message.attachment.url if message.attachment else None
        cursor = await self._connection.execute(
            """
            INSERT INTO messages(conversation_id, role, content, image_url)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, message.role, message.content, image_url),
        )
        await self._connection.commit()
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover - defensive
            raise RuntimeError("Insert failed: lastrowid is None")
        return int(inserted_id)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Return conversation messages ordered by insertion."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT role, content, image_url
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id ASC
            """,
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

        messages: list[Message] = []
        for row in rows:
            attachment = Attachment(url=row["image_url"]) if row["image_url"] else None
            messages.append(
                Message(role=row["role"], content=row["content"], attachment=attachment)
            )
        return messages

    # ------------------------------------------------------------------
    # Model settings
    # ------------------------------------------------------------------

    async def list_model_settings(self) -> list[ModelDescriptor]:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT model_id, model_name, provider, enabled
            FROM model_settings
            ORDER BY provider ASC, rowid ASC
            """
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_row_to_descriptor(row) for row in rows]

    async def get_model_setting(self, model_id: str) -> ModelDescriptor | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT model_id, model_name, provider, enabled
            FROM model_settings
            WHERE model_id = ?
            LIMIT 1
            """,
            (model_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _row_to_descriptor(row)

    async def insert_model_settings(self, descriptors: list[ModelDescriptor]) -> int:
        """Add descriptors that are not stored yet; existing rows are kept."""

        if not descriptors:
            return 0

        assert self._connection is not None
        params: list[tuple[Any, ...]] = [
            (
                descriptor.model_id,
                descriptor.display_name,
                descriptor.provider.value,
                int(descriptor.enabled),
            )
            for descriptor in descriptors
        ]
        before = self._connection.total_changes
        await self._connection.executemany(
            """
            INSERT OR IGNORE INTO model_settings(model_id, model_name, provider, enabled)
            VALUES (?, ?, ?, ?)
            """,
            params,
        )
        await self._connection.commit()
        return self._connection.total_changes - before

    async def set_model_enabled(self, model_id: str, enabled: bool) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            UPDATE model_settings
            SET enabled = ?, updated_at = CURRENT_TIMESTAMP
            WHERE model_id = ?
            """,
            (int(enabled), model_id),
        )
        updated = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        return bool(updated)


__all__ = ["ChatRepository"]
