"""
Cancellable scheduled tasks owned by a viewer.

Every timer a viewer runs (reconnect, preview poll, settle delay, stall
check) lives in one TaskScope, so a single ``cancel_all()`` neutralizes all
of them whichever way the viewer shuts down.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


async def _call(callback: Callable[[], Any]):
    result = callback()
    if inspect.isawaitable(result):
        await result


class PeriodicTask:
    """
    Runs ``callback`` every ``interval`` seconds until cancelled.

    Ticks never overlap: a callback that takes longer than the interval
    delays the next tick instead of stacking up.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Any],
        immediate: bool = False
    ):
        self.name = name
        self.interval = interval
        self.callback = callback
        self.immediate = immediate
        self.ticks = 0
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "PeriodicTask":
        if not self.running:
            self._stopped = False
            self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    def cancel(self):
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run(self):
        if self.immediate:
            await self._tick()
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped:
                break
            await self._tick()

    async def _tick(self):
        self.ticks += 1
        try:
            await _call(self.callback)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Error in scheduled task {self.name}")


class TaskScope:
    """
    Owner of a viewer's named timers.

    Starting a timer under a name that is already running is a no-op.
    ``cancel_all()`` is idempotent and may be called from inside one of the
    scope's own callbacks; the calling task is left to finish.
    """

    def __init__(self):
        self._periodic: Dict[str, PeriodicTask] = {}
        self._delayed: Dict[str, asyncio.Task] = {}

    def periodic(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Any],
        immediate: bool = False
    ) -> PeriodicTask:
        existing = self._periodic.get(name)
        if existing is not None and existing.running:
            return existing
        task = PeriodicTask(name, interval, callback, immediate=immediate).start()
        self._periodic[name] = task
        logger.debug(f"Scheduled {name} every {interval}s")
        return task

    def later(self, name: str, delay: float, callback: Callable[[], Any]) -> asyncio.Task:
        """Run ``callback`` once after ``delay`` seconds."""
        existing = self._delayed.get(name)
        if existing is not None and not existing.done():
            return existing

        async def fire():
            await asyncio.sleep(delay)
            try:
                await _call(callback)
            except Exception:
                logger.exception(f"Error in delayed task {name}")

        task = asyncio.get_running_loop().create_task(fire(), name=name)
        self._delayed[name] = task
        return task

    def is_active(self, name: str) -> bool:
        if name in self._periodic:
            return self._periodic[name].running
        task = self._delayed.get(name)
        return task is not None and not task.done()

    def cancel(self, name: str):
        periodic = self._periodic.pop(name, None)
        if periodic is not None:
            periodic.cancel()
        task = self._delayed.pop(name, None)
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def cancel_all(self):
        for name in list(self._periodic) + list(self._delayed):
            self.cancel(name)

    @property
    def active(self) -> int:
        return sum(1 for name in set(self._periodic) | set(self._delayed) if self.is_active(name))

    async def __aenter__(self) -> "TaskScope":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.cancel_all()
