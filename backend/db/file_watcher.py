"""Session directory watcher using watchfiles.

Watches the sessions root for transcript writes, maps each changed path to
its session ID and coalesces bursts of writes into one update callback per
session once the debounce window has passed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

from watchfiles import Change, awatch

from backend import config
from backend.parsers.sessions import SUBAGENTS_DIRNAME

logger = logging.getLogger("agent_observer.watcher")

SessionCallback = Callable[[str], Awaitable[None]]

_CHANGE_KINDS = {
    Change.added: "added",
    Change.modified: "modified",
    Change.deleted: "deleted",
}


def extract_session_id(root: Path, path: Path) -> str:
    """Map a transcript path to its session ID.

    ``root/{id}.jsonl`` and ``root/{id}/subagents/{file}.jsonl`` both map to
    ``id``; anything else maps to "".
    """
    try:
        rel = path.relative_to(root)
    except ValueError:
        try:
            rel = path.resolve().relative_to(root.resolve())
        except ValueError:
            return ""

    parts = rel.parts
    if len(parts) == 1:
        name = parts[0]
        return name[: -len(".jsonl")] if name.endswith(".jsonl") else ""
    if len(parts) >= 3 and parts[1] == SUBAGENTS_DIRNAME:
        return parts[0]
    return ""


class WatchfilesSource:
    """Filesystem event source backed by ``watchfiles.awatch``.

    awatch watches recursively, so directories created under an existing
    root are covered without re-registration. ``watch()`` of a path outside
    every current root restarts the underlying watcher with the new set.
    """

    def __init__(
        self,
        root: Path,
        *,
        force_polling: Optional[bool] = None,
        poll_delay_ms: int = 300,
        debounce_ms: int = 50,
    ):
        self._roots: list[Path] = [Path(root)]
        self._force_polling = config.WATCH_FORCE_POLLING if force_polling is None else force_polling
        self._poll_delay_ms = poll_delay_ms
        self._debounce_ms = debounce_ms
        self._roots_changed = False

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def watch(self, path: Path) -> None:
        path = Path(path)
        if any(path == root or root in path.parents for root in self._roots):
            return
        self._roots.append(path)
        self._roots_changed = True
        logger.info("Watching additional path %s", path)

    async def events(self, stop_event: asyncio.Event) -> AsyncIterator[tuple[str, Path]]:
        while not stop_event.is_set():
            self._roots_changed = False
            watch_paths = [p for p in self._roots if p.exists()]
            if not watch_paths:
                logger.warning("No watch paths exist, watcher has nothing to monitor")
                return

            changes_iter = awatch(
                *watch_paths,
                stop_event=stop_event,
                force_polling=self._force_polling,
                poll_delay_ms=self._poll_delay_ms,
                debounce=self._debounce_ms,
                recursive=True,
            )
            async with aclosing(changes_iter) as stream:
                async for changes in stream:
                    for change, path_str in changes:
                        yield _CHANGE_KINDS.get(change, "modified"), Path(path_str)
                    if self._roots_changed:
                        break
            if not self._roots_changed:
                return


class SessionWatcher:
    """Background watcher that fires ``on_session_updated(session_id)``.

    Two tasks run while started: one consumes filesystem events and records
    a "last touched" time per session, the other ticks at a fixed interval
    and fires the callback for sessions that have been quiet for the
    debounce window. The callback runs inline on the tick task.
    """

    def __init__(
        self,
        root: Path,
        on_session_updated: SessionCallback,
        *,
        source=None,
        debounce_seconds: Optional[float] = None,
        tick_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.root = Path(root)
        self._callback = on_session_updated
        self._source = source or WatchfilesSource(self.root)
        self._debounce = config.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._tick = config.WATCH_TICK_SECONDS if tick_seconds is None else tick_seconds
        self._clock = clock or time.monotonic
        self._pending: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the event and tick tasks."""
        if self._running:
            logger.warning("Session watcher already running")
            return
        if not self.root.exists():
            logger.warning("Sessions directory %s does not exist, watcher not started", self.root)
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._source.watch(self.root)
        for entry in self.root.iterdir():
            if entry.is_dir():
                self._watch_session_dir(entry)

        self._tasks = [
            asyncio.create_task(self._event_loop()),
            asyncio.create_task(self._tick_loop()),
        ]
        logger.info("Session watcher started for %s", self.root)

    async def stop(self) -> None:
        """Signal both tasks to stop; a callback already running is allowed to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
        self._running = False
        logger.info("Session watcher stopped")

    def pending_sessions(self) -> list[str]:
        return sorted(self._pending)

    def _watch_session_dir(self, path: Path) -> None:
        self._source.watch(path)
        agents_dir = path / SUBAGENTS_DIRNAME
        if agents_dir.is_dir():
            self._source.watch(agents_dir)

    async def handle_event(self, kind: str, path: Path) -> None:
        """Record one filesystem event. Only writes and creations count."""
        if kind not in ("added", "modified"):
            return

        if kind == "added" and path.is_dir():
            self._watch_session_dir(path)
            return

        if path.suffix != ".jsonl":
            return

        session_id = extract_session_id(self.root, path)
        if not session_id:
            return

        async with self._lock:
            self._pending[session_id] = self._clock()

    async def flush_ready(self) -> list[str]:
        """Fire the callback for every session quiet for at least the debounce window."""
        async with self._lock:
            now = self._clock()
            ready = [sid for sid, last in self._pending.items() if now - last >= self._debounce]
            for sid in ready:
                del self._pending[sid]

        for session_id in ready:
            try:
                await self._callback(session_id)
            except Exception as e:
                logger.error("Error handling update for session %s: %s", session_id, e)
        return ready

    async def _event_loop(self) -> None:
        try:
            async for kind, path in self._source.events(self._stop_event):
                await self.handle_event(kind, path)
        except asyncio.CancelledError:
            logger.info("Session watcher event task cancelled")
            raise
        except Exception as e:
            logger.error("Session watcher error: %s", e)
        finally:
            # The tick task stops with the event task.
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()

    async def _tick_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._tick)
                break
            except asyncio.TimeoutError:
                pass
            await self.flush_ready()
