"""API routers for teams, agents and conversations."""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

import aiosqlite
from fastapi import APIRouter, HTTPException, Query, Request

from backend.date_utils import parse_timestamp, utc_now
from backend.db.store import Store
from backend.models import CreateTeamRequest, Team

logger = logging.getLogger("agent_observer.api")

teams_router = APIRouter(prefix="/api/teams", tags=["teams"])
agents_router = APIRouter(prefix="/api/agents", tags=["agents"])
conversations_router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_store(request: Request) -> Store:
    store = getattr(request.app.state, "store", None)
    if not store:
        raise HTTPException(status_code=503, detail="Store not initialized")
    return store


def _safe_json(raw: str | dict | None) -> dict | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _message_row(row: dict) -> dict:
    return {**row, "raw_thoughts": _safe_json(row.get("raw_thoughts"))}


def _trace_row(row: dict) -> dict:
    return {**row, "attributes": _safe_json(row.get("attributes"))}


def build_trace_tree(rows: list[dict]) -> list[dict]:
    """Nest spans under their parents; spans with no known parent become roots."""
    nodes = {row["id"]: {**_trace_row(row), "children": []} for row in rows}
    roots: list[dict] = []
    for row in rows:
        node = nodes[row["id"]]
        parent = nodes.get(row.get("parent_span_id") or "")
        if parent is not None and parent is not node:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots


def _avg_token_usage(llm_traces: list[dict]) -> float:
    if not llm_traces:
        return 0.0
    total = 0
    for row in llm_traces:
        attrs = _safe_json(row.get("attributes")) or {}
        total += int(attrs.get("input_tokens") or 0) + int(attrs.get("output_tokens") or 0)
    return total / len(llm_traces)


# ── Teams ───────────────────────────────────────────────────────────

@teams_router.get("")
async def list_teams(request: Request) -> list[dict]:
    store = get_store(request)
    return await store.teams.list_all()


@teams_router.post("", status_code=201)
async def create_team(req: CreateTeamRequest, request: Request) -> dict:
    store = get_store(request)
    team = Team(id=str(uuid.uuid4()), status="idle", created_at=utc_now(), **req.model_dump())
    try:
        await store.teams.create(team.model_dump())
    except aiosqlite.Error as e:
        logger.error("Failed to create team: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create team")
    return team.model_dump(mode="json")


@teams_router.get("/{team_id}")
async def get_team(team_id: str, request: Request) -> dict[str, Any]:
    store = get_store(request)
    team = await store.teams.get_by_id(team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")

    team["agents"] = await store.agents.list_by_team(team_id)
    return {
        "team": team,
        "recent_conversations": await store.conversations.list_by_team(team_id, limit=10),
        "stats": await store.teams.get_stats(team_id),
    }


@teams_router.get("/{team_id}/agents")
async def list_team_agents(team_id: str, request: Request) -> list[dict]:
    store = get_store(request)
    return await store.agents.list_by_team(team_id)


@teams_router.get("/{team_id}/conversations")
async def list_team_conversations(team_id: str, request: Request) -> list[dict]:
    store = get_store(request)
    return await store.conversations.list_by_team(team_id)


# ── Agents ──────────────────────────────────────────────────────────

@agents_router.get("/{agent_id}")
async def get_agent(agent_id: str, request: Request) -> dict[str, Any]:
    store = get_store(request)
    agent = await store.agents.get_by_id(agent_id)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    llm_traces = await store.traces.list_by_agent(agent_id, span_name="llm_call")
    return {
        "agent": agent,
        "stats": {
            "conversation_count": await store.conversations.count_by_agent(agent_id),
            "message_count": await store.messages.count_by_agent(agent_id),
            "avg_token_usage": _avg_token_usage(llm_traces),
        },
    }


@agents_router.get("/{agent_id}/traces")
async def get_agent_traces(
    agent_id: str,
    request: Request,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
) -> list[dict]:
    store = get_store(request)
    rows = await store.traces.list_by_agent(
        agent_id,
        start=parse_timestamp(start) if start else None,
        end=parse_timestamp(end) if end else None,
    )
    return [_trace_row(r) for r in rows]


# ── Conversations ───────────────────────────────────────────────────

@conversations_router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, request: Request) -> dict[str, Any]:
    store = get_store(request)
    conversation = await store.conversations.get_by_id(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {
        "conversation": conversation,
        "message_count": await store.messages.count_by_conversation(conversation_id),
    }


@conversations_router.get("/{conversation_id}/messages")
async def get_conversation_messages(conversation_id: str, request: Request) -> list[dict]:
    store = get_store(request)
    rows = await store.messages.list_by_conversation(conversation_id)
    return [_message_row(r) for r in rows]


@conversations_router.get("/{conversation_id}/traces")
async def get_conversation_traces(conversation_id: str, request: Request) -> list[dict]:
    store = get_store(request)
    rows = await store.traces.list_by_conversation(conversation_id)
    return build_trace_tree(rows)
