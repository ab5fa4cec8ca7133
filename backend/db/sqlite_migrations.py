"""Database schema creation and versioning.

All CREATE TABLE statements for the observer store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("agent_observer.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Teams (one per session) ─────────────────────────────────────
CREATE TABLE IF NOT EXISTS teams (
    id           TEXT PRIMARY KEY,
    name         TEXT DEFAULT '',
    description  TEXT DEFAULT '',
    created_by   TEXT DEFAULT '',
    status       TEXT DEFAULT 'idle',
    team_name    TEXT DEFAULT '',
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_teams_created ON teams(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_teams_team_name ON teams(team_name);

-- ── 2. Agents (lead + teammates) ───────────────────────────────────
CREATE TABLE IF NOT EXISTS agents (
    id          TEXT PRIMARY KEY,
    team_id     TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    role        TEXT DEFAULT 'teammate',
    name        TEXT DEFAULT '',
    specialty   TEXT DEFAULT '',
    status      TEXT DEFAULT 'idle',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agents_team ON agents(team_id);

-- ── 3. Conversations ───────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS conversations (
    id          TEXT PRIMARY KEY,
    team_id     TEXT NOT NULL,
    agent_id    TEXT NOT NULL,
    title       TEXT DEFAULT '',
    started_at  TEXT NOT NULL,
    ended_at    TEXT
);

CREATE INDEX IF NOT EXISTS idx_conversations_team ON conversations(team_id, started_at DESC);
CREATE INDEX IF NOT EXISTS idx_conversations_agent ON conversations(agent_id);

-- ── 4. Messages ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS messages (
    id               TEXT PRIMARY KEY,
    conversation_id  TEXT NOT NULL,
    team_id          TEXT NOT NULL,
    agent_id         TEXT,
    role             TEXT NOT NULL,
    content          TEXT DEFAULT '',
    raw_thoughts     TEXT,
    created_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_team ON messages(team_id);
CREATE INDEX IF NOT EXISTS idx_messages_agent ON messages(agent_id) WHERE agent_id IS NOT NULL;

-- ── 5. Traces (span tree per conversation) ─────────────────────────
CREATE TABLE IF NOT EXISTS traces (
    id               TEXT PRIMARY KEY,
    team_id          TEXT NOT NULL,
    agent_id         TEXT NOT NULL,
    conversation_id  TEXT NOT NULL,
    parent_span_id   TEXT,
    span_name        TEXT NOT NULL,
    attributes       TEXT,
    start_time       TEXT NOT NULL,
    end_time         TEXT
);

CREATE INDEX IF NOT EXISTS idx_traces_conversation ON traces(conversation_id, start_time);
CREATE INDEX IF NOT EXISTS idx_traces_agent ON traces(agent_id, start_time DESC);
CREATE INDEX IF NOT EXISTS idx_traces_parent ON traces(parent_span_id) WHERE parent_span_id IS NOT NULL;
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.Error:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete, schema version %s", SCHEMA_VERSION)
