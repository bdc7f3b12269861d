"""
File system watcher service for mission status files.

Monitors the status directory for writes to ``<mission>.json`` files and
turns each one into a StatusEnvelope for the broadcast hub. Agents rewrite
these files wholesale, so every envelope is a full snapshot; a file caught
mid-write simply fails to parse and is dropped until the next write.

Uses the watchdog library, with optional per-file debouncing.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from ..config import MISSIONS, STATUS_EXTENSION
from ..models.schemas import StatusEnvelope

logger = logging.getLogger(__name__)


class StatusChangeAdapter:
    """
    Turns a changed path into a StatusEnvelope.

    Knows nothing about how the change was noticed, so the same adapter
    serves an inotify-style watch, a directory poll, or a direct call.
    """

    def __init__(
        self,
        extension: str = STATUS_EXTENSION,
        missions: Iterable[str] = MISSIONS
    ):
        self.extension = extension
        self.missions = tuple(missions)

    def on_change(self, path: str) -> Optional[StatusEnvelope]:
        """
        Read the status file at ``path``.

        Returns:
            The envelope, or None if the file is not a status file for a
            known mission or its content is not a complete JSON object.
        """
        path_obj = Path(path)
        if path_obj.suffix != self.extension:
            return None

        mission = path_obj.stem
        if mission not in self.missions:
            logger.debug(f"Ignoring status file for unknown mission: {path_obj.name}")
            return None

        try:
            data = json.loads(path_obj.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # Partial writes land here; the next write supersedes them
            logger.debug(f"Discarding unreadable status file {path_obj.name}: {e}")
            return None

        if not isinstance(data, dict):
            logger.debug(f"Discarding non-object status in {path_obj.name}")
            return None

        return StatusEnvelope(mission=mission, data=data)


class StatusEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that hands changed paths to the event loop.

    Watchdog calls us on its observer thread; everything after the handoff
    runs on the loop. With ``debounce_ms`` > 0, rapid writes to the same file
    collapse into one callback after a quiet period.
    """

    def __init__(
        self,
        callback: Callable[[str], Any],
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = 0
    ):
        super().__init__()
        self.callback = callback
        self.loop = loop
        self.debounce_ms = debounce_ms

        # Pending debounced callbacks per file
        self.pending_events: Dict[str, asyncio.TimerHandle] = {}
        self.tasks: Set[asyncio.Task] = set()

    def on_created(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self._handle_event(event.src_path)

    def on_modified(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self._handle_event(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        # Atomic rewrites land as a rename onto the status file
        if event.is_directory:
            return
        self._handle_event(event.dest_path)

    def _handle_event(self, file_path):
        if isinstance(file_path, bytes):
            file_path = file_path.decode("utf-8", errors="replace")
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self._schedule_callback, file_path)

    def _schedule_callback(self, file_path: str):
        """Run on the loop: trigger now, or after the debounce window."""
        if self.debounce_ms <= 0:
            self._trigger(file_path)
            return

        if file_path in self.pending_events:
            self.pending_events[file_path].cancel()

        def trigger():
            self.pending_events.pop(file_path, None)
            self._trigger(file_path)

        self.pending_events[file_path] = self.loop.call_later(self.debounce_ms / 1000.0, trigger)

    def _trigger(self, file_path: str):
        result = self.callback(file_path)
        if asyncio.iscoroutine(result):
            task = self.loop.create_task(result)
            self.tasks.add(task)
            task.add_done_callback(self.tasks.discard)

    def cancel_pending(self):
        for handle in self.pending_events.values():
            handle.cancel()
        self.pending_events.clear()
        for task in list(self.tasks):
            task.cancel()


class StatusWatcher:
    """
    Watches the status directory and notifies callbacks with envelopes.

    Callbacks receive every accepted StatusEnvelope in the order the
    filesystem reported the writes.
    """

    def __init__(
        self,
        status_dir: str,
        adapter: Optional[StatusChangeAdapter] = None,
        debounce_ms: int = 0,
        use_polling: bool = False
    ):
        """
        Initialize status watcher.

        Args:
            status_dir: Directory holding one status file per mission
            adapter: Path-to-envelope adapter
            debounce_ms: Milliseconds to debounce writes per file (0 = off)
            use_polling: Poll the directory instead of using native events
        """
        self.status_dir = Path(status_dir).resolve()
        self.adapter = adapter or StatusChangeAdapter()
        self.debounce_ms = debounce_ms
        self.use_polling = use_polling

        self.observer = None
        self.handler: Optional[StatusEventHandler] = None
        self.callbacks: List[Callable[[StatusEnvelope], Any]] = []
        self._lock = asyncio.Lock()

        self.stats = {
            "events_received": 0,
            "events_broadcast": 0,
            "events_discarded": 0,
            "last_event": None
        }

    def register_callback(self, callback: Callable[[StatusEnvelope], Any]):
        """Register a sync or async callback for accepted envelopes."""
        self.callbacks.append(callback)
        logger.info(f"Registered status callback: {getattr(callback, '__qualname__', callback)}")

    async def handle_path(self, file_path: str) -> Optional[StatusEnvelope]:
        """
        Process one changed path.

        Args:
            file_path: Path reported by the filesystem

        Returns:
            The envelope delivered to callbacks, or None if discarded
        """
        self.stats["events_received"] += 1

        # Writes are delivered in the order they were reported
        async with self._lock:
            envelope = self.adapter.on_change(file_path)
            if envelope is None:
                self.stats["events_discarded"] += 1
                return None

            for callback in self.callbacks:
                try:
                    result = callback(envelope)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(f"Error in status callback for {envelope.mission}: {e}")

        self.stats["events_broadcast"] += 1
        self.stats["last_event"] = datetime.now(timezone.utc)
        return envelope

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Start watching the status directory."""
        if self.observer is not None:
            return

        if not self.status_dir.exists():
            logger.warning(f"Status directory does not exist, creating: {self.status_dir}")
            self.status_dir.mkdir(parents=True, exist_ok=True)

        loop = loop or asyncio.get_running_loop()
        self.handler = StatusEventHandler(
            callback=self.handle_path,
            loop=loop,
            debounce_ms=self.debounce_ms
        )

        self.observer = PollingObserver() if self.use_polling else Observer()
        self.observer.schedule(self.handler, str(self.status_dir), recursive=False)
        self.observer.start()
        logger.info(f"Started watching: {self.status_dir}")

    def stop(self):
        """Stop watching the status directory."""
        if self.handler:
            self.handler.cancel_pending()
        if self.observer and self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=5)
            logger.info("Stopped status watching")
        self.observer = None

    def get_stats(self) -> Dict[str, Any]:
        """Get watcher statistics."""
        last_event = self.stats["last_event"]
        return {
            **self.stats,
            "last_event": last_event.isoformat() if last_event else None,
            "is_running": self.observer.is_alive() if self.observer else False,
            "status_dir": str(self.status_dir),
            "backend": "polling" if self.use_polling else "native",
            "registered_callbacks": len(self.callbacks)
        }
