"""Assemble ParsedSession values from a session's main and sub-agent transcripts."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from backend.models import ParsedAgent, ParsedMessage, ParsedSession
from backend.parsers.log_parser import parse_log_file

logger = logging.getLogger("agent_observer.parser")

SUBAGENTS_DIRNAME = "subagents"


class SessionNotFoundError(FileNotFoundError):
    """Raised when a session's main transcript does not exist."""


def scan_sessions(root: Path) -> list[str]:
    """Return session IDs for every top-level ``*.jsonl`` file under root."""
    return sorted(
        entry.stem
        for entry in root.iterdir()
        if entry.is_file() and entry.suffix == ".jsonl"
    )


def main_log_path(root: Path, session_id: str) -> Path:
    return root / f"{session_id}.jsonl"


def subagents_dir(root: Path, session_id: str) -> Path:
    return root / session_id / SUBAGENTS_DIRNAME


def _widen_range(
    started_at: datetime | None,
    ended_at: datetime | None,
    messages: list[ParsedMessage],
) -> tuple[datetime | None, datetime | None]:
    for msg in messages:
        if msg.timestamp is None:
            continue
        if started_at is None or msg.timestamp < started_at:
            started_at = msg.timestamp
        if ended_at is None or msg.timestamp > ended_at:
            ended_at = msg.timestamp
    return started_at, ended_at


def _first_non_empty(messages: list[ParsedMessage], field: str) -> str:
    for msg in messages:
        value = getattr(msg, field)
        if value:
            return value
    return ""


def _parse_subagent(path: Path) -> ParsedAgent:
    messages = parse_log_file(path)
    agent_id = path.stem  # e.g. "agent-aa482f75504208258"
    for msg in messages:
        if msg.agent_id:
            agent_id = msg.agent_id
    return ParsedAgent(
        agent_id=agent_id,
        slug=_first_non_empty(messages, "slug"),
        messages=messages,
    )


def _fallback_slug(session_id: str) -> str:
    return f"session-{session_id[:8]}"


def parse_session(root: Path, session_id: str) -> ParsedSession:
    """Parse a session's main transcript plus any sub-agent transcripts.

    Raises SessionNotFoundError when the main file is missing. Sub-agent
    files that fail to parse are logged and left out.
    """
    main_file = main_log_path(root, session_id)
    try:
        main_messages = parse_log_file(main_file)
    except FileNotFoundError as exc:
        raise SessionNotFoundError(f"session log not found: {main_file}") from exc

    started_at, ended_at = _widen_range(None, None, main_messages)
    sub_agents: list[ParsedAgent] = []

    agents_dir = subagents_dir(root, session_id)
    if agents_dir.is_dir():
        for agent_file in sorted(agents_dir.glob("*.jsonl")):
            if not agent_file.is_file():
                continue
            try:
                agent = _parse_subagent(agent_file)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to parse subagent file %s: %s", agent_file, exc)
                continue
            started_at, ended_at = _widen_range(started_at, ended_at, agent.messages)
            sub_agents.append(agent)

    return ParsedSession(
        session_id=session_id,
        slug=_first_non_empty(main_messages, "slug") or _fallback_slug(session_id),
        team_name=_first_non_empty(main_messages, "team_name"),
        agent_name=_first_non_empty(main_messages, "agent_name"),
        main_messages=main_messages,
        sub_agents=sub_agents,
        started_at=started_at,
        ended_at=ended_at,
    )
