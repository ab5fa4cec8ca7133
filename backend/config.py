"""Agent Observer Backend Configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default

# Project root (one level up from backend/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Claude Code writes one {sessionId}.jsonl per session here, plus
# {sessionId}/subagents/*.jsonl for delegated workers.
SESSIONS_DIR = Path(
    os.getenv("AGENT_OBSERVER_SESSIONS_DIR", str(Path.home() / ".claude" / "projects"))
).expanduser()

# Database
DB_PATH = Path(os.getenv("AGENT_OBSERVER_DB_PATH", str(PROJECT_ROOT / "data" / "agent_observer.db")))

# Watcher tuning
DEBOUNCE_SECONDS = _env_float("AGENT_OBSERVER_DEBOUNCE_SECONDS", 2.0)
WATCH_TICK_SECONDS = _env_float("AGENT_OBSERVER_WATCH_TICK_SECONDS", 0.5)
WATCH_FORCE_POLLING = _env_bool("AGENT_OBSERVER_WATCH_FORCE_POLLING", False)

# Sync tuning
ACTIVE_WINDOW_SECONDS = _env_int("AGENT_OBSERVER_ACTIVE_WINDOW_SECONDS", 300)
SYNC_BATCH_SIZE = _env_int("AGENT_OBSERVER_SYNC_BATCH_SIZE", 100)
# Synthesized tool/thinking spans have no measured duration in the log format.
SPAN_PLACEHOLDER_SECONDS = _env_float("AGENT_OBSERVER_SPAN_PLACEHOLDER_SECONDS", 1.0)
STARTUP_SYNC_ENABLED = _env_bool("AGENT_OBSERVER_STARTUP_SYNC_ENABLED", True)

# Server settings
HOST = os.getenv("AGENT_OBSERVER_HOST", "0.0.0.0")
PORT = _env_int("AGENT_OBSERVER_PORT", 8080)
LOG_LEVEL = os.getenv("AGENT_OBSERVER_LOG_LEVEL", "INFO").upper()

# CORS
FRONTEND_ORIGIN = os.getenv("AGENT_OBSERVER_FRONTEND_ORIGIN", "http://localhost:5173")
