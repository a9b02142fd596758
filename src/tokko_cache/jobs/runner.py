"""Fire-and-forget asyncio tasks that outlive the request that started them."""

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any

from tokko_cache.logging import get_logger, job_context

logger = get_logger(__name__)


class BackgroundJobs:
    """Keeps strong references to running job tasks and reports how they end."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def start(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Schedule ``coro`` under ``name``.

        Raises:
            RuntimeError: If a job with the same name is still running.
        """
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            coro.close()
            raise RuntimeError(f"Job {name} is already running")
        task = asyncio.create_task(coro, name=name, context=job_context(name))
        self._tasks[name] = task
        task.add_done_callback(self._on_done)
        logger.info("background_job_started", job=name)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        name = task.get_name()
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            logger.info("background_job_cancelled", job=name)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_job_failed", job=name, exc_info=exc)
        else:
            logger.info("background_job_finished", job=name)

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    @property
    def running(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    async def cancel_all(self) -> None:
        """Cancel every running job and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._tasks.clear()
