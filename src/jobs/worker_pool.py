"""
Supervised pool of background scan tasks.

``dispatch`` is "enqueue and return": the caller gets control back at
once while the pool keeps a strong reference to the task and observes
its completion, logging anything the task failed to handle itself.
Concurrency is not capped here; capacity is a deployment concern.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from src.utils import logger

log = logger.create_logger("WorkerPool")


class WorkerPool:
    """Tracks in-flight tasks until they finish or the pool shuts down."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._tasks)

    def dispatch(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Schedule *coro* as a supervised task and return it immediately."""
        if self._closed:
            coro.close()
            raise RuntimeError("Worker pool is shut down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.warn("Task cancelled", {"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            log.error("Unhandled error in background task", {"task": task.get_name(), "error": repr(exc)})

    async def wait_idle(self) -> None:
        """Wait until every task dispatched so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float = 0.0) -> None:
        """Stop accepting work, give tasks *grace_seconds*, then cancel the rest."""
        self._closed = True
        if not self._tasks:
            return
        pending = list(self._tasks)
        if grace_seconds > 0:
            _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
            pending = list(still_running)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        log.info("Worker pool shut down", {"cancelled": len(pending)})
