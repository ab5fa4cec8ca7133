"""Store capability handed to the sync engine and the API routers.

Bundles the per-entity repositories around one connection and owns the
conversation replace contract used by every sync cycle.
"""
from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from backend import config
from backend.db.repositories import (
    SqliteAgentRepository,
    SqliteConversationRepository,
    SqliteMessageRepository,
    SqliteTeamRepository,
    SqliteTraceRepository,
)

logger = logging.getLogger("agent_observer.db")


class Store:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.teams = SqliteTeamRepository(db)
        self.agents = SqliteAgentRepository(db)
        self.conversations = SqliteConversationRepository(db)
        self.messages = SqliteMessageRepository(db)
        self.traces = SqliteTraceRepository(db)

    async def replace_conversation(
        self,
        conversation_id: str,
        messages: list[dict],
        traces: list[dict],
        batch_size: int | None = None,
    ) -> dict[str, int]:
        """Replace every message and trace of a conversation with the given rows.

        Calling this twice with the same rows leaves the same final state.
        Returns the number of rows actually written per kind.
        """
        size = max(1, batch_size or config.SYNC_BATCH_SIZE)

        try:
            await self.messages.delete_by_conversation(conversation_id)
        except aiosqlite.Error as exc:
            logger.warning("Failed to clear old messages for conversation %s: %s", conversation_id, exc)
        try:
            await self.traces.delete_by_conversation(conversation_id)
        except aiosqlite.Error as exc:
            logger.warning("Failed to clear old traces for conversation %s: %s", conversation_id, exc)

        return {
            "messages": await self._insert_batched(self.messages, messages, size, "message"),
            "traces": await self._insert_batched(self.traces, traces, size, "trace"),
        }

    async def _insert_batched(self, repo: Any, rows: list[dict], batch_size: int, kind: str) -> int:
        written = 0
        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            end = start + len(batch)
            try:
                await repo.insert_many(batch)
                written += len(batch)
                continue
            except aiosqlite.Error as exc:
                logger.warning("Failed to batch insert %ss (batch %d-%d): %s", kind, start, end, exc)

            # A single bad row must not block its siblings.
            for row in batch:
                try:
                    await repo.insert(row)
                    written += 1
                except aiosqlite.Error as exc:
                    logger.warning("Failed to insert %s %s: %s", kind, row.get("id"), exc)
        return written
