"""SQLite implementation of AgentRepository."""
from __future__ import annotations

import aiosqlite

from backend.date_utils import to_storage


class SqliteAgentRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, agent: dict) -> None:
        await self.db.execute(
            """INSERT INTO agents (id, team_id, role, name, specialty, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name=excluded.name,
                   status=excluded.status
            """,
            (
                agent["id"],
                agent["team_id"],
                agent.get("role", "teammate"),
                agent.get("name", ""),
                agent.get("specialty", ""),
                agent.get("status", "idle"),
                to_storage(agent["created_at"]),
            ),
        )
        await self.db.commit()

    async def get_by_id(self, agent_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_by_team(self, team_id: str) -> list[dict]:
        # Lead first, then teammates in creation order.
        async with self.db.execute(
            """SELECT * FROM agents WHERE team_id = ?
               ORDER BY CASE role WHEN 'lead' THEN 0 ELSE 1 END, created_at""",
            (team_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]
