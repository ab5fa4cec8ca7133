"""SQLite implementation of TraceRepository."""
from __future__ import annotations

import json
from datetime import datetime

import aiosqlite

from backend.date_utils import to_storage

_INSERT = """INSERT INTO traces
    (id, team_id, agent_id, conversation_id, parent_span_id, span_name,
     attributes, start_time, end_time)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"""


def _params(trace: dict) -> tuple:
    attributes = trace.get("attributes")
    return (
        trace["id"],
        trace["team_id"],
        trace["agent_id"],
        trace["conversation_id"],
        trace.get("parent_span_id"),
        trace["span_name"],
        json.dumps(attributes) if attributes is not None else None,
        to_storage(trace["start_time"]),
        to_storage(trace.get("end_time")),
    )


class SqliteTraceRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, trace: dict) -> None:
        try:
            await self.db.execute(_INSERT, _params(trace))
            await self.db.commit()
        except aiosqlite.Error:
            await self.db.rollback()
            raise

    async def insert_many(self, traces: list[dict]) -> None:
        try:
            await self.db.executemany(_INSERT, [_params(t) for t in traces])
            await self.db.commit()
        except aiosqlite.Error:
            await self.db.rollback()
            raise

    async def delete_by_conversation(self, conversation_id: str) -> int:
        cur = await self.db.execute(
            "DELETE FROM traces WHERE conversation_id = ?", (conversation_id,)
        )
        await self.db.commit()
        return cur.rowcount

    async def get_by_id(self, trace_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM traces WHERE id = ?", (trace_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def end_span(self, trace_id: str, end_time: datetime) -> bool:
        cur = await self.db.execute(
            "UPDATE traces SET end_time = ? WHERE id = ?",
            (to_storage(end_time), trace_id),
        )
        await self.db.commit()
        return cur.rowcount > 0

    async def list_by_conversation(self, conversation_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM traces WHERE conversation_id = ? ORDER BY start_time ASC, rowid ASC",
            (conversation_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_by_agent(
        self,
        agent_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        span_name: str | None = None,
    ) -> list[dict]:
        clauses = ["agent_id = ?"]
        params: list = [agent_id]
        if start is not None:
            clauses.append("start_time >= ?")
            params.append(to_storage(start))
        if end is not None:
            clauses.append("start_time <= ?")
            params.append(to_storage(end))
        if span_name is not None:
            clauses.append("span_name = ?")
            params.append(span_name)

        query = f"SELECT * FROM traces WHERE {' AND '.join(clauses)} ORDER BY start_time DESC"
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]
