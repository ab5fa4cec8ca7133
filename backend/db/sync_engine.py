"""Parsed session → DB sync engine.

Maps a ParsedSession onto teams/agents/conversations (upsert) and
messages/traces (full replace per conversation).
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import aiosqlite

from backend import config
from backend.date_utils import utc_now
from backend.db.store import Store
from backend.models import (
    Agent,
    Conversation,
    Message,
    ParsedMessage,
    ParsedSession,
    Team,
    Trace,
)
from backend.parsers.sessions import parse_session, scan_sessions

logger = logging.getLogger("agent_observer.sync")

_TRACE_RESULT_LIMIT = 2000
_THOUGHT_RESULT_LIMIT = 1000
_THINKING_PREVIEW_LIMIT = 200
_TRUNCATED_SUFFIX = "...(truncated)"


def _truncate(value: str, limit: int, suffix: str = _TRUNCATED_SUFFIX) -> str:
    if len(value) > limit:
        return value[:limit] + suffix
    return value


def agent_display_name(slug: str, fallback: str) -> str:
    if slug:
        return slug
    name = fallback.removeprefix("agent-")
    return name[:12]


def is_recent(timestamp: datetime | None, now: datetime, window: timedelta) -> bool:
    """True when timestamp is known and strictly less than `window` old."""
    return timestamp is not None and now - timestamp < window


def agent_status(messages: list[ParsedMessage], now: datetime, window: timedelta) -> str:
    if not messages:
        return "idle"
    return "active" if is_recent(messages[-1].timestamp, now, window) else "idle"


def agent_start_time(messages: list[ParsedMessage], fallback: datetime) -> datetime:
    for msg in messages:
        if msg.timestamp is not None:
            return msg.timestamp
    return fallback


def build_raw_thoughts(msg: ParsedMessage) -> dict[str, Any] | None:
    """Structured reasoning payload for an agent turn, or None if there is nothing to keep."""
    thoughts: dict[str, Any] = {}

    if msg.thinking:
        thoughts["thinking"] = msg.thinking

    if msg.tool_calls:
        calls = []
        for tc in msg.tool_calls:
            call: dict[str, Any] = {"name": tc.name, "input": tc.input}
            if tc.result:
                call["result"] = _truncate(tc.result, _THOUGHT_RESULT_LIMIT)
            calls.append(call)
        thoughts["tool_calls"] = calls

    if msg.token_usage is not None:
        thoughts["token_usage"] = {
            "input": msg.token_usage.input_tokens,
            "output": msg.token_usage.output_tokens,
            "cache_creation": msg.token_usage.cache_creation,
            "cache_read": msg.token_usage.cache_read,
        }

    return thoughts or None


def _message_role(msg: ParsedMessage) -> str | None:
    if msg.role == "user":
        # Tool-result carriers and empty turns have nothing user-visible.
        return "user" if msg.content else None
    if msg.role == "assistant":
        if msg.is_sidechain and msg.agent_id:
            return "teammate_message"
        return "agent"
    return None


def build_conversation_rows(
    messages: list[ParsedMessage],
    team_id: str,
    conversation_id: str,
    default_agent_id: str,
    trace_agent_id: str,
    now: datetime,
    span_duration: timedelta,
) -> tuple[list[Message], list[Trace]]:
    """Derive stored messages and synthesized spans for one conversation.

    Span end times are start + span_duration: the log has no real end marker.
    """
    rows: list[Message] = []
    traces: list[Trace] = []

    for msg in messages:
        role = _message_role(msg)
        if role is None:
            continue

        agent_id = None
        raw_thoughts = None
        if role != "user":
            agent_id = msg.agent_id or default_agent_id
            raw_thoughts = build_raw_thoughts(msg)

        timestamp = msg.timestamp or now
        rows.append(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                team_id=team_id,
                agent_id=agent_id,
                role=role,
                content=msg.content,
                raw_thoughts=raw_thoughts,
                created_at=timestamp,
            )
        )

        for tc in msg.tool_calls:
            attributes: dict[str, Any] = {"tool_name": tc.name, "input": tc.input}
            if tc.result:
                attributes["result"] = _truncate(tc.result, _TRACE_RESULT_LIMIT)
            traces.append(
                Trace(
                    id=str(uuid.uuid4()),
                    team_id=team_id,
                    agent_id=trace_agent_id,
                    conversation_id=conversation_id,
                    span_name=f"tool.{tc.name}",
                    attributes=attributes,
                    start_time=timestamp,
                    end_time=timestamp + span_duration,
                )
            )

        if msg.thinking:
            attributes = {"thinking_preview": _truncate(msg.thinking, _THINKING_PREVIEW_LIMIT, "...")}
            if msg.token_usage is not None:
                attributes["input_tokens"] = msg.token_usage.input_tokens
                attributes["output_tokens"] = msg.token_usage.output_tokens
                attributes["cache_creation"] = msg.token_usage.cache_creation
                attributes["cache_read"] = msg.token_usage.cache_read
            traces.append(
                Trace(
                    id=str(uuid.uuid4()),
                    team_id=team_id,
                    agent_id=trace_agent_id,
                    conversation_id=conversation_id,
                    span_name="llm_call",
                    attributes=attributes,
                    start_time=timestamp,
                    end_time=timestamp + span_duration,
                )
            )

    return rows, traces


class SyncEngine:
    """Parsed session → store synchronization.

    Team/agent/conversation rows are upserted; each conversation's messages
    and traces are deleted and rebuilt on every cycle. Work for the same
    session ID is serialized through a per-session lock.
    """

    def __init__(
        self,
        store: Store,
        *,
        now: Callable[[], datetime] | None = None,
        active_window_seconds: float | None = None,
        batch_size: int | None = None,
        span_seconds: float | None = None,
    ):
        self.store = store
        self._now = now or utc_now
        self._active_window = timedelta(
            seconds=config.ACTIVE_WINDOW_SECONDS if active_window_seconds is None else active_window_seconds
        )
        self._batch_size = batch_size or config.SYNC_BATCH_SIZE
        self._span_duration = timedelta(
            seconds=config.SPAN_PLACEHOLDER_SECONDS if span_seconds is None else span_seconds
        )
        self._session_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    # ── Entry points ────────────────────────────────────────────────

    async def sync_session(self, parsed: ParsedSession) -> dict[str, int]:
        async with self._lock_for(parsed.session_id):
            return await self._sync_session(parsed)

    async def sync_one(self, root: Path, session_id: str) -> dict[str, int]:
        """Parse and sync one session. Parse and store errors propagate."""
        async with self._lock_for(session_id):
            parsed = parse_session(root, session_id)
            return await self._sync_session(parsed)

    async def sync_all(self, root: Path) -> dict[str, int]:
        """Parse and sync every session under root, one at a time."""
        session_ids = scan_sessions(root)
        logger.info("Found %d sessions to sync", len(session_ids))

        stats = {"found": len(session_ids), "synced": 0, "failed": 0}
        for session_id in session_ids:
            try:
                await self.sync_one(root, session_id)
            except (OSError, ValueError, aiosqlite.Error) as exc:
                logger.warning("Failed to sync session %s: %s", session_id, exc)
                stats["failed"] += 1
                continue
            stats["synced"] += 1

        logger.info("Full sync completed (synced=%d failed=%d)", stats["synced"], stats["failed"])
        return stats

    # ── Session sync ────────────────────────────────────────────────

    async def _sync_session(self, parsed: ParsedSession) -> dict[str, int]:
        logger.info(
            "Syncing session %s (slug: %s, %d main messages, %d subagents)",
            parsed.session_id, parsed.slug, len(parsed.main_messages), len(parsed.sub_agents),
        )
        now = self._now()
        session_id = parsed.session_id
        session_start = parsed.started_at or now
        stats = {"messages": 0, "traces": 0}

        team = Team(
            id=session_id,
            name=parsed.slug,
            description=f"Claude Code session: {parsed.slug}",
            created_by="claude-code",
            status="running" if is_recent(parsed.ended_at, now, self._active_window) else "idle",
            team_name=parsed.team_name,
            created_at=session_start,
        )
        await self.store.teams.upsert(team.model_dump())

        lead_agent_id = f"{session_id}-lead"
        lead = Agent(
            id=lead_agent_id,
            team_id=session_id,
            role="lead",
            name=agent_display_name(parsed.slug, "lead"),
            specialty="Main Claude Code session",
            status=agent_status(parsed.main_messages, now, self._active_window),
            created_at=session_start,
        )
        await self.store.agents.upsert(lead.model_dump())

        for sa in parsed.sub_agents:
            sub_agent = Agent(
                id=sa.agent_id,
                team_id=session_id,
                role="teammate",
                name=agent_display_name(sa.slug, sa.agent_id),
                specialty=f"Sub-agent {sa.agent_id}",
                status=agent_status(sa.messages, now, self._active_window),
                created_at=agent_start_time(sa.messages, session_start),
            )
            try:
                await self.store.agents.upsert(sub_agent.model_dump())
            except aiosqlite.Error as exc:
                logger.warning("Failed to upsert subagent %s: %s", sa.agent_id, exc)

        conv_id = f"{session_id}-conv"
        conv = Conversation(
            id=conv_id,
            team_id=session_id,
            agent_id=lead_agent_id,
            title=parsed.slug,
            started_at=session_start,
            ended_at=parsed.ended_at,
        )
        await self.store.conversations.upsert(conv.model_dump())

        written = await self._replace_messages(
            parsed.main_messages, session_id, conv_id, lead_agent_id, lead_agent_id, now,
        )
        stats["messages"] += written["messages"]
        stats["traces"] += written["traces"]

        for sa in parsed.sub_agents:
            sa_conv_id = f"{session_id}-conv-{sa.agent_id}"
            ended_at = sa.messages[-1].timestamp if sa.messages else None
            sa_conv = Conversation(
                id=sa_conv_id,
                team_id=session_id,
                agent_id=sa.agent_id,
                title=agent_display_name(sa.slug, sa.agent_id),
                started_at=agent_start_time(sa.messages, session_start),
                ended_at=ended_at,
            )
            try:
                await self.store.conversations.upsert(sa_conv.model_dump())
                written = await self._replace_messages(
                    sa.messages, session_id, sa_conv_id, sa.agent_id, sa.agent_id, now,
                )
            except aiosqlite.Error as exc:
                logger.warning("Failed to sync subagent conversation %s: %s", sa_conv_id, exc)
                continue
            stats["messages"] += written["messages"]
            stats["traces"] += written["traces"]

        logger.info("Finished syncing session %s", session_id)
        return stats

    async def _replace_messages(
        self,
        messages: list[ParsedMessage],
        team_id: str,
        conversation_id: str,
        default_agent_id: str,
        trace_agent_id: str,
        now: datetime,
    ) -> dict[str, int]:
        rows, traces = build_conversation_rows(
            messages,
            team_id,
            conversation_id,
            default_agent_id,
            trace_agent_id,
            now,
            self._span_duration,
        )
        return await self.store.replace_conversation(
            conversation_id,
            [m.model_dump() for m in rows],
            [t.model_dump() for t in traces],
            batch_size=self._batch_size,
        )
