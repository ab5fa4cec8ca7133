"""SQLite implementation of ConversationRepository."""
from __future__ import annotations

import aiosqlite

from backend.date_utils import to_storage


class SqliteConversationRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, conversation: dict) -> None:
        await self.db.execute(
            """INSERT INTO conversations (id, team_id, agent_id, title, started_at, ended_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   title=excluded.title,
                   ended_at=excluded.ended_at
            """,
            (
                conversation["id"],
                conversation["team_id"],
                conversation["agent_id"],
                conversation.get("title", ""),
                to_storage(conversation["started_at"]),
                to_storage(conversation.get("ended_at")),
            ),
        )
        await self.db.commit()

    async def get_by_id(self, conversation_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_by_team(self, team_id: str, limit: int | None = None) -> list[dict]:
        query = "SELECT * FROM conversations WHERE team_id = ? ORDER BY started_at DESC"
        params: tuple = (team_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (team_id, limit)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count_by_agent(self, agent_id: str) -> int:
        async with self.db.execute(
            "SELECT COUNT(*) FROM conversations WHERE agent_id = ?", (agent_id,)
        ) as cur:
            row = await cur.fetchone()
        return row[0] if row else 0
