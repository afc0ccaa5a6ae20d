"""Cancelable delayed actions.

The session store arms expiries through a ``Scheduler`` so that tests can
substitute a virtual clock. Callbacks may be plain functions or return an
awaitable, which is run as a task on the event loop.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Protocol

from qlbot.workflow.types import TimerHandle

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Something that can run a callback once after a delay."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self._run, callback)

    def _run(self, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("Delayed action failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delayed action failed: %s", exc, exc_info=exc)

    async def shutdown(self) -> None:
        """Cancel delayed actions that are still running."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
