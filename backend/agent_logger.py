"""Small HTTP client for pushing messages and spans to the /internal API.

Example::

    logger = AgentLogger("http://localhost:8080")
    with logger.span(team_id, agent_id, conv_id, "tool.search") as span_id:
        ...
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import requests

from backend.date_utils import format_timestamp, utc_now


class AgentLoggerError(RuntimeError):
    """Raised when the observer API rejects a push request."""


class AgentLogger:
    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AgentLoggerError(f"{method} {path} failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise AgentLoggerError(f"{method} {path} returned status {resp.status_code}: {resp.text}")
        return resp.json() if resp.content else {}

    def log_message(
        self,
        conversation_id: str,
        team_id: str,
        role: str,
        content: str,
        agent_id: Optional[str] = None,
        raw_thoughts: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "conversation_id": conversation_id,
            "team_id": team_id,
            "role": role,
            "content": content,
        }
        if agent_id is not None:
            payload["agent_id"] = agent_id
        if raw_thoughts is not None:
            payload["raw_thoughts"] = raw_thoughts
        return self._request("POST", "/internal/log_message", payload)

    def start_span(
        self,
        team_id: str,
        agent_id: str,
        conversation_id: str,
        span_name: str,
        attributes: Optional[dict[str, Any]] = None,
        parent_span_id: Optional[str] = None,
    ) -> str:
        """Open a span and return its trace ID."""
        payload: dict[str, Any] = {
            "team_id": team_id,
            "agent_id": agent_id,
            "conversation_id": conversation_id,
            "span_name": span_name,
            "start_time": format_timestamp(utc_now()),
        }
        if attributes is not None:
            payload["attributes"] = attributes
        if parent_span_id is not None:
            payload["parent_span_id"] = parent_span_id
        return self._request("POST", "/internal/log_trace", payload)["id"]

    def end_span(self, trace_id: str, end_time: Optional[datetime] = None) -> None:
        self._request(
            "PATCH",
            f"/internal/traces/{trace_id}/end",
            {"end_time": format_timestamp(end_time or utc_now())},
        )

    @contextmanager
    def span(
        self,
        team_id: str,
        agent_id: str,
        conversation_id: str,
        span_name: str,
        attributes: Optional[dict[str, Any]] = None,
        parent_span_id: Optional[str] = None,
    ) -> Iterator[str]:
        trace_id = self.start_span(team_id, agent_id, conversation_id, span_name, attributes, parent_span_id)
        try:
            yield trace_id
        finally:
            self.end_span(trace_id)
