"""SQLite implementation of MessageRepository."""
from __future__ import annotations

import json

import aiosqlite

from backend.date_utils import to_storage

_INSERT = """INSERT INTO messages
    (id, conversation_id, team_id, agent_id, role, content, raw_thoughts, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)"""


def _params(message: dict) -> tuple:
    raw_thoughts = message.get("raw_thoughts")
    return (
        message["id"],
        message["conversation_id"],
        message["team_id"],
        message.get("agent_id"),
        message["role"],
        message.get("content", ""),
        json.dumps(raw_thoughts) if raw_thoughts is not None else None,
        to_storage(message["created_at"]),
    )


class SqliteMessageRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, message: dict) -> None:
        try:
            await self.db.execute(_INSERT, _params(message))
            await self.db.commit()
        except aiosqlite.Error:
            await self.db.rollback()
            raise

    async def insert_many(self, messages: list[dict]) -> None:
        """Insert all rows in one transaction; nothing is kept if any row fails."""
        try:
            await self.db.executemany(_INSERT, [_params(m) for m in messages])
            await self.db.commit()
        except aiosqlite.Error:
            await self.db.rollback()
            raise

    async def delete_by_conversation(self, conversation_id: str) -> int:
        cur = await self.db.execute(
            "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
        )
        await self.db.commit()
        return cur.rowcount

    async def list_by_conversation(self, conversation_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at ASC, rowid ASC",
            (conversation_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count_by_conversation(self, conversation_id: str) -> int:
        return await self._count("conversation_id", conversation_id)

    async def count_by_agent(self, agent_id: str) -> int:
        return await self._count("agent_id", agent_id)

    async def _count(self, column: str, value: str) -> int:
        async with self.db.execute(
            f"SELECT COUNT(*) FROM messages WHERE {column} = ?", (value,)
        ) as cur:
            row = await cur.fetchone()
        return row[0] if row else 0
