"""Push ingestion endpoints used by the AgentLogger client.

Messages and spans posted here bypass file ingestion and are broadcast to
live viewers as soon as they are stored.
"""
from __future__ import annotations

import logging
import uuid

import aiosqlite
from fastapi import APIRouter, HTTPException, Request

from backend.date_utils import utc_now
from backend.live import hub
from backend.models import EndSpanRequest, LogMessageRequest, LogTraceRequest, Message, Trace
from backend.routers.api import get_store

logger = logging.getLogger("agent_observer.api")

internal_router = APIRouter(prefix="/internal", tags=["internal"])


@internal_router.post("/log_message", status_code=201)
async def log_message(req: LogMessageRequest, request: Request) -> dict:
    store = get_store(request)
    message = Message(id=str(uuid.uuid4()), created_at=utc_now(), **req.model_dump())
    payload = message.model_dump(mode="json")
    try:
        await store.messages.insert(message.model_dump())
    except aiosqlite.Error as e:
        logger.error("Failed to log message: %s", e)
        raise HTTPException(status_code=500, detail="Failed to log message")

    await hub.broadcast({"type": "new_message", "data": payload})
    return payload


@internal_router.post("/log_trace", status_code=201)
async def log_trace(req: LogTraceRequest, request: Request) -> dict:
    store = get_store(request)
    fields = req.model_dump()
    fields["start_time"] = fields.get("start_time") or utc_now()
    trace = Trace(id=str(uuid.uuid4()), **fields)
    payload = trace.model_dump(mode="json")
    try:
        await store.traces.insert(trace.model_dump())
    except aiosqlite.Error as e:
        logger.error("Failed to log trace: %s", e)
        raise HTTPException(status_code=500, detail="Failed to log trace")

    await hub.broadcast({"type": "new_trace", "data": payload})
    return payload


@internal_router.patch("/traces/{trace_id}/end")
async def end_span(trace_id: str, req: EndSpanRequest, request: Request) -> dict:
    store = get_store(request)
    try:
        updated = await store.traces.end_span(trace_id, req.end_time)
    except aiosqlite.Error as e:
        logger.error("Failed to end span %s: %s", trace_id, e)
        raise HTTPException(status_code=500, detail="Failed to end span")
    if not updated:
        raise HTTPException(status_code=404, detail="Trace not found")
    return {"status": "ok"}
