"""Pydantic models for parsed sessions, stored entities and push requests."""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Optional

# ── Parse-time models ──────────────────────────────────────────────

class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation: int = 0
    cache_read: int = 0


class ParsedToolCall(BaseModel):
    id: str = ""
    name: str = ""  # Bash, Write, Read, Grep, ...
    input: dict[str, Any] = Field(default_factory=dict)
    result: str = ""


class ParsedMessage(BaseModel):
    uuid: str = ""
    parent_uuid: str = ""
    type: str = ""  # "user" | "assistant"
    role: str = ""  # "user" | "assistant"
    content: str = ""
    thinking: str = ""
    tool_calls: list[ParsedToolCall] = Field(default_factory=list)
    tool_results: dict[str, str] = Field(default_factory=dict)  # tool_use_id -> result text
    token_usage: Optional[TokenUsage] = None
    timestamp: Optional[datetime] = None  # None when unparsable
    agent_id: str = ""  # empty for the main session
    is_sidechain: bool = False
    slug: str = ""
    team_name: str = ""
    agent_name: str = ""


class ParsedAgent(BaseModel):
    agent_id: str
    slug: str = ""
    messages: list[ParsedMessage] = Field(default_factory=list)


class ParsedSession(BaseModel):
    session_id: str
    slug: str = ""
    team_name: str = ""
    agent_name: str = ""
    main_messages: list[ParsedMessage] = Field(default_factory=list)
    sub_agents: list[ParsedAgent] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


# ── Stored entities ────────────────────────────────────────────────

class Team(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    created_by: str = ""
    status: str = "idle"  # running | stopped | idle
    team_name: str = ""
    created_at: datetime


class Agent(BaseModel):
    id: str
    team_id: str
    role: str = "teammate"  # lead | teammate
    name: str = ""
    specialty: str = ""
    status: str = "idle"  # active | idle | error
    created_at: datetime


class Conversation(BaseModel):
    id: str
    team_id: str
    agent_id: str
    title: str = ""
    started_at: datetime
    ended_at: Optional[datetime] = None


class Message(BaseModel):
    id: str
    conversation_id: str
    team_id: str
    agent_id: Optional[str] = None
    role: str  # user | agent | system | teammate_message
    content: str = ""
    raw_thoughts: Optional[dict[str, Any]] = None
    created_at: datetime


class Trace(BaseModel):
    id: str
    team_id: str
    agent_id: str
    conversation_id: str
    parent_span_id: Optional[str] = None
    span_name: str  # tool.Bash, llm_call, agent.decision, ...
    attributes: Optional[dict[str, Any]] = None
    start_time: datetime
    end_time: Optional[datetime] = None


# ── Push API request models ────────────────────────────────────────

class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    created_by: str = ""


class LogMessageRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    agent_id: Optional[str] = None
    role: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    raw_thoughts: Optional[dict[str, Any]] = None


class LogTraceRequest(BaseModel):
    team_id: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    parent_span_id: Optional[str] = None
    span_name: str = Field(..., min_length=1)
    attributes: Optional[dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class EndSpanRequest(BaseModel):
    end_time: datetime
