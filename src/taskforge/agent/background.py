"""
agent/background.py - Detached Background Work

Best-effort coroutines (reflection, conversation persistence, callback
dispatch) run as named asyncio tasks owned by a BackgroundTasks instance.
A task's failure is logged and never re-raised into whoever spawned it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from taskforge.observability.logger import get_logger

log = get_logger(__name__)


class BackgroundTasks:

    def __init__(self, owner: str = "taskforge"):
        self._owner = owner
        # Strong references; the event loop only keeps weak ones.
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self._owner}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self) -> None:
        """Wait for everything spawned so far (and anything those spawn)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in self._tasks:
            task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.debug("background.task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.warning(
                "background.task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )
