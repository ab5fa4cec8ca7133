"""SQLite implementation of TeamRepository."""
from __future__ import annotations

import aiosqlite

from backend.date_utils import to_storage


class SqliteTeamRepository:
    """SQLite-backed team storage. One team row per synced session."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, team: dict) -> None:
        # created_at is only written on insert; the rest is refreshed every sync.
        await self.db.execute(
            """INSERT INTO teams (
                id, name, description, created_by, status, team_name, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                description=excluded.description,
                status=excluded.status,
                team_name=excluded.team_name
            """,
            (
                team["id"],
                team.get("name", ""),
                team.get("description", ""),
                team.get("created_by", ""),
                team.get("status", "idle"),
                team.get("team_name", ""),
                to_storage(team["created_at"]),
            ),
        )
        await self.db.commit()

    async def create(self, team: dict) -> None:
        """Plain insert for teams created through the API; an existing id is an error."""
        try:
            await self.db.execute(
                """INSERT INTO teams (
                    id, name, description, created_by, status, team_name, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    team["id"],
                    team.get("name", ""),
                    team.get("description", ""),
                    team.get("created_by", ""),
                    team.get("status", "idle"),
                    team.get("team_name", ""),
                    to_storage(team["created_at"]),
                ),
            )
            await self.db.commit()
        except aiosqlite.Error:
            await self.db.rollback()
            raise

    async def get_by_id(self, team_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM teams WHERE id = ?", (team_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        """All teams, newest first, with agent/conversation/message counts."""
        query = """
            SELECT
                t.*,
                (SELECT COUNT(*) FROM agents a WHERE a.team_id = t.id) AS agent_count,
                (SELECT COUNT(*) FROM conversations c WHERE c.team_id = t.id) AS conversation_count,
                (SELECT COUNT(*) FROM messages m WHERE m.team_id = t.id) AS message_count
            FROM teams t
            ORDER BY t.created_at DESC
        """
        async with self.db.execute(query) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def get_stats(self, team_id: str) -> dict:
        query = """
            SELECT
                (SELECT COUNT(*) FROM agents WHERE team_id = ?),
                (SELECT COUNT(*) FROM conversations WHERE team_id = ?),
                (SELECT COUNT(*) FROM messages WHERE team_id = ?)
        """
        async with self.db.execute(query, (team_id, team_id, team_id)) as cur:
            row = await cur.fetchone()
        return {
            "agent_count": row[0] or 0,
            "conversation_count": row[1] or 0,
            "message_count": row[2] or 0,
        }
