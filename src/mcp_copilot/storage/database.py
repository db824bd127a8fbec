"""SQLite storage for conversations and their messages."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from mcp_copilot.log import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id              TEXT    PRIMARY KEY,
    title           TEXT    NOT NULL,
    position        INTEGER NOT NULL DEFAULT 0,
    metadata_json   TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT    NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    seq             INTEGER NOT NULL,
    role            TEXT    NOT NULL CHECK(role IN ('user','assistant','system','tool')),
    content         TEXT,
    tool_calls_json TEXT    NOT NULL DEFAULT '[]',
    tool_call_id    TEXT,
    tool_name       TEXT,
    metadata_json   TEXT    NOT NULL DEFAULT '{}',
    timestamp       REAL    NOT NULL,
    UNIQUE (conversation_id, seq)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, seq);
"""


class Database:
    """One aiosqlite connection shared by the repositories.

    Writes go through ``transaction()`` so a failed conversation save leaves
    the previous snapshot intact.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys=ON")
        if self._db_path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")

        cursor = await self._conn.execute("PRAGMA user_version")
        (version,) = await cursor.fetchone()
        if version > SCHEMA_VERSION:
            await self.close()
            raise RuntimeError(
                f"Database {self._db_path} has schema version {version}; "
                f"this build supports up to {SCHEMA_VERSION}"
            )
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path, schema_version=SCHEMA_VERSION)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back and re-raise on any error."""
        conn = self.conn
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
