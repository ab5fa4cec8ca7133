"""Agent Observer FastAPI Backend: main application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import config
from backend.db import connection, sqlite_migrations
from backend.db.file_watcher import SessionWatcher
from backend.db.store import Store
from backend.db.sync_engine import SyncEngine
from backend.live import hub, ws_router
from backend.routers.api import agents_router, conversations_router, teams_router
from backend.routers.internal import internal_router

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("agent_observer")


def make_session_callback(sync: SyncEngine):
    """Re-sync one session, then tell live viewers about it."""

    async def on_session_updated(session_id: str) -> None:
        logger.info("Session %s updated, re-syncing...", session_id)
        try:
            await sync.sync_one(config.SESSIONS_DIR, session_id)
        except Exception as e:
            logger.error("Error syncing session %s: %s", session_id, e)
            return
        await hub.broadcast({"type": "session_updated", "data": {"session_id": session_id}})

    return on_session_updated


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Agent Observer backend starting up")

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await sqlite_migrations.run_migrations(db)

    # 3. Initialize store + sync engine
    store = Store(db)
    sync = SyncEngine(store)
    app.state.store = store
    app.state.sync_engine = sync

    # 4. Initial sync (background task)
    if config.STARTUP_SYNC_ENABLED and config.SESSIONS_DIR.is_dir():
        logger.info("Starting initial sync of Claude Code sessions from %s", config.SESSIONS_DIR)
        app.state.sync_task = asyncio.create_task(sync.sync_all(config.SESSIONS_DIR))

    # 5. Start session watcher
    watcher = SessionWatcher(config.SESSIONS_DIR, make_session_callback(sync))
    app.state.watcher = watcher
    await watcher.start()

    yield

    logger.info("Agent Observer backend shutting down")

    # Cancel background sync if running
    sync_task = getattr(app.state, "sync_task", None)
    if sync_task is not None:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass

    await watcher.stop()
    await connection.close_connection()


app = FastAPI(
    title="Agent Observer API",
    description="Backend API for observing Claude Code sessions, agents and traces",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(teams_router)
app.include_router(agents_router)
app.include_router(conversations_router)
app.include_router(internal_router)
app.include_router(ws_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    watcher = getattr(app.state, "watcher", None)
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "watcher": "running" if watcher is not None and watcher.is_running else "stopped",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("backend.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
