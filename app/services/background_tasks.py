"""
Process-wide runner for work that outlives the request that started it.

The event loop only keeps weak references to tasks, so the runner holds the
strong ones until each task finishes.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        if self._closed:
            coro.close()
            raise RuntimeError("Background task runner is shut down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Background task started", task_name=name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task cancelled", task_name=task.get_name())
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                task_name=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give outstanding tasks `timeout` seconds, then cancel what is left."""
        self._closed = True
        if not self._tasks:
            return

        tasks = list(self._tasks)
        logger.info("Waiting for background tasks", count=len(tasks), timeout=timeout)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Background tasks cancelled at shutdown", count=len(still_running))
