"""Conversation repository: load and save the full conversation list."""

from __future__ import annotations

import json
from datetime import datetime

import aiosqlite

from mcp_copilot.ai.tools.base import ToolCallRequest
from mcp_copilot.core.types import Role
from mcp_copilot.log import get_logger
from mcp_copilot.storage.base import ConversationStore
from mcp_copilot.storage.database import Database
from mcp_copilot.storage.models import Conversation, Message

logger = get_logger(__name__)


class ConversationRepository(ConversationStore):
    """Persists conversations to SQLite.

    ``save`` receives the complete conversation list. Messages are
    append-only, so only rows past the stored sequence number are inserted;
    conversations missing from the list are deleted.
    """

    def __init__(self, db: Database):
        self._db = db

    async def load(self) -> list[Conversation]:
        """Load all conversations, most recent first, with their messages."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations ORDER BY position ASC, created_at DESC"
        )
        rows = await cursor.fetchall()
        conversations: list[Conversation] = []
        for row in rows:
            msg_cursor = await self._db.conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
                (row["id"],),
            )
            msg_rows = await msg_cursor.fetchall()
            conversations.append(
                Conversation(
                    id=row["id"],
                    title=row["title"],
                    messages=[self._row_to_message(m) for m in msg_rows],
                    metadata=json.loads(row["metadata_json"]),
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
            )
        logger.debug("conversations_loaded", count=len(conversations))
        return conversations

    async def save(self, conversations: list[Conversation]) -> bool:
        """Persist the conversation list. Returns False if the write failed."""
        try:
            async with self._db.transaction() as conn:
                await self._write(conn, conversations)
        except (aiosqlite.Error, TypeError, ValueError) as e:
            logger.error("conversations_save_failed", error=str(e))
            return False
        return True

    async def _write(self, conn: aiosqlite.Connection, conversations: list[Conversation]) -> None:
        keep_ids = [c.id for c in conversations]
        placeholders = ",".join("?" for _ in keep_ids)
        if keep_ids:
            await conn.execute(
                f"DELETE FROM conversations WHERE id NOT IN ({placeholders})", keep_ids
            )
        else:
            await conn.execute("DELETE FROM conversations")

        for position, conv in enumerate(conversations):
            await conn.execute(
                """INSERT INTO conversations (id, title, position, metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title,
                       position = excluded.position,
                       metadata_json = excluded.metadata_json""",
                (
                    conv.id,
                    conv.title,
                    position,
                    json.dumps(conv.metadata, ensure_ascii=False),
                    conv.created_at.isoformat(),
                ),
            )
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conv.id,)
            )
            (stored,) = await cursor.fetchone()
            if stored > len(conv.messages):
                await conn.execute(
                    "DELETE FROM messages WHERE conversation_id = ? AND seq >= ?",
                    (conv.id, len(conv.messages)),
                )
                stored = len(conv.messages)
            await conn.executemany(
                """INSERT INTO messages
                   (conversation_id, seq, role, content, tool_calls_json,
                    tool_call_id, tool_name, metadata_json, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    self._message_params(conv.id, seq, msg)
                    for seq, msg in enumerate(conv.messages)
                    if seq >= stored
                ],
            )
        logger.debug("conversations_saved", count=len(conversations))

    @staticmethod
    def _message_params(conversation_id: str, seq: int, msg: Message) -> tuple:
        return (
            conversation_id,
            seq,
            str(msg.role),
            msg.content,
            json.dumps([c.to_api_dict() for c in msg.tool_calls], ensure_ascii=False),
            msg.tool_call_id,
            msg.tool_name,
            json.dumps(msg.metadata, ensure_ascii=False),
            msg.timestamp,
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            role=Role(row["role"]),
            content=row["content"],
            tool_calls=[ToolCallRequest.from_api_dict(c) for c in json.loads(row["tool_calls_json"])],
            tool_call_id=row["tool_call_id"],
            tool_name=row["tool_name"],
            metadata=json.loads(row["metadata_json"]),
            timestamp=row["timestamp"],
        )
