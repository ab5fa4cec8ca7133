"""Decode Claude Code JSONL transcripts into ParsedMessage sequences."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, BinaryIO

from backend.date_utils import parse_timestamp
from backend.models import ParsedMessage, ParsedToolCall, TokenUsage

logger = logging.getLogger("agent_observer.parser")

# Hard ceiling for a single JSONL line; anything longer aborts the file.
MAX_LINE_BYTES = 64 * 1024 * 1024

_CONVERSATION_TYPES = {"user", "assistant"}
_RESULT_PREVIEW_CHARS = 500


class LogLineTooLongError(ValueError):
    """Raised when a transcript line exceeds MAX_LINE_BYTES."""


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _tool_result_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list) and all(isinstance(block, dict) for block in content):
        chunks = [block["text"] for block in content if isinstance(block.get("text"), str) and block["text"]]
        return "\n".join(chunks)

    raw = json.dumps(content, separators=(",", ":"))
    if len(raw) > _RESULT_PREVIEW_CHARS:
        raw = raw[:_RESULT_PREVIEW_CHARS] + "..."
    return raw


def _token_usage(usage: Any) -> TokenUsage | None:
    if not isinstance(usage, dict):
        return None
    return TokenUsage(
        input_tokens=_coerce_int(usage.get("input_tokens")),
        output_tokens=_coerce_int(usage.get("output_tokens")),
        cache_creation=_coerce_int(usage.get("cache_creation_input_tokens")),
        cache_read=_coerce_int(usage.get("cache_read_input_tokens")),
    )


def _parse_assistant_content(parsed: ParsedMessage, content: Any) -> None:
    if isinstance(content, str):
        parsed.content = content
        return
    if not isinstance(content, list):
        return

    text_parts: list[str] = []
    thinking_parts: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = _as_str(block.get("text"))
            if text:
                text_parts.append(text)
        elif block_type == "thinking":
            thinking = _as_str(block.get("thinking"))
            if thinking:
                thinking_parts.append(thinking)
        elif block_type == "tool_use":
            tool_input = block.get("input")
            parsed.tool_calls.append(
                ParsedToolCall(
                    id=_as_str(block.get("id")),
                    name=_as_str(block.get("name")),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )

    parsed.content = "\n".join(text_parts)
    parsed.thinking = "\n\n".join(thinking_parts)


def _parse_user_content(parsed: ParsedMessage, content: Any, tool_results: dict[str, str]) -> None:
    if isinstance(content, str):
        parsed.content = content
        return
    if not isinstance(content, list):
        return

    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        tool_use_id = _as_str(block.get("tool_use_id"))
        if not tool_use_id:
            continue
        result = _tool_result_to_text(block.get("content"))
        tool_results[tool_use_id] = result
        parsed.tool_results[tool_use_id] = result


def _associate_tool_results(messages: list[ParsedMessage], tool_results: dict[str, str]) -> None:
    for message in messages:
        for call in message.tool_calls:
            if call.id in tool_results:
                call.result = tool_results[call.id]


def _read_line(stream: BinaryIO, line_num: int, source: str) -> bytes:
    raw = stream.readline(MAX_LINE_BYTES + 1)
    if len(raw) > MAX_LINE_BYTES and not raw.endswith(b"\n"):
        raise LogLineTooLongError(
            f"line {line_num} in {source} exceeds {MAX_LINE_BYTES} bytes"
        )
    return raw


def parse_log(stream: BinaryIO, source: str = "<stream>") -> list[ParsedMessage]:
    """Parse one JSONL transcript stream into ordered user/assistant messages.

    Malformed lines are logged and skipped. Tool results are matched to the
    tool calls they answer after the whole stream has been read, so a result
    may appear any number of lines after its call.
    """
    messages: list[ParsedMessage] = []
    tool_results: dict[str, str] = {}

    line_num = 0
    while True:
        line_num += 1
        raw = _read_line(stream, line_num, source)
        if not raw:
            break
        line = raw.strip()
        if not line:
            continue

        try:
            entry = json.loads(line)
        except ValueError as exc:
            logger.warning("Malformed JSON at line %d in %s: %s", line_num, source, exc)
            continue
        if not isinstance(entry, dict):
            logger.warning("Unexpected record at line %d in %s: not an object", line_num, source)
            continue

        # progress / file-history-snapshot / queue-operation are not conversational
        if entry.get("type") not in _CONVERSATION_TYPES:
            continue

        payload = entry.get("message")
        if payload is None:
            continue
        if not isinstance(payload, dict):
            logger.warning("Failed to parse message at line %d in %s: not an object", line_num, source)
            continue

        parsed = ParsedMessage(
            uuid=_as_str(entry.get("uuid")),
            parent_uuid=_as_str(entry.get("parentUuid")),
            type=_as_str(entry.get("type")),
            role=_as_str(payload.get("role")),
            timestamp=parse_timestamp(_as_str(entry.get("timestamp"))),
            agent_id=_as_str(entry.get("agentId")),
            is_sidechain=entry.get("isSidechain") is True,
            slug=_as_str(entry.get("slug")),
            team_name=_as_str(entry.get("teamName")),
            agent_name=_as_str(entry.get("agentName")),
        )

        if parsed.role == "assistant":
            _parse_assistant_content(parsed, payload.get("content"))
            parsed.token_usage = _token_usage(payload.get("usage"))
            messages.append(parsed)
        elif parsed.role == "user":
            _parse_user_content(parsed, payload.get("content"), tool_results)
            messages.append(parsed)

    _associate_tool_results(messages, tool_results)
    return messages


def parse_log_file(path: Path) -> list[ParsedMessage]:
    """Parse a transcript file. Open/read failures propagate as OSError."""
    with path.open("rb") as handle:
        return parse_log(handle, source=str(path))
