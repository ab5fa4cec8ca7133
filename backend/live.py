"""WebSocket fan-out of change notifications to connected viewers."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("agent_observer.live")


class BroadcastHub:
    def __init__(self):
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def register(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.add(websocket)

    async def unregister(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)

    async def broadcast(self, payload: dict[str, Any]) -> None:
        """Send payload to every client; clients that fail are dropped."""
        message = jsonable_encoder(payload)
        async with self._lock:
            clients = list(self._clients)

        for websocket in clients:
            try:
                await websocket.send_json(message)
            except (RuntimeError, WebSocketDisconnect, OSError) as e:
                logger.warning("WebSocket write error: %s", e)
                await self.unregister(websocket)


hub = BroadcastHub()

ws_router = APIRouter(tags=["live"])


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    await hub.register(websocket)
    logger.info("WebSocket client connected")
    try:
        # Viewers only listen; inbound frames are drained until disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        await hub.unregister(websocket)
