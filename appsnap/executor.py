# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Background executor for admitted snapshot and restore jobs.

Jobs run as asyncio tasks owned by the executor rather than by the request
that started them: a client disconnect cancels the request handler, not the
job. The executor keeps strong references until each task finishes and
logs failures nobody awaited.
"""

import asyncio
from typing import Any, Awaitable, Callable, Set

import structlog

logger = structlog.get_logger()


class BackgroundExecutor:
    """Owns fire-and-forget tasks for the lifetime of the process."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def submit(
        self,
        job: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> asyncio.Task:
        """
        Schedule `job(*args, **kwargs)` on the running loop.

        Returns:
            The task; callers may await it (through asyncio.shield to keep
            it alive across cancellation) or ignore it.
        """
        task = asyncio.get_running_loop().create_task(job(*args, **kwargs), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

        logger.debug("background_job_submitted", job=name or getattr(job, "__name__", "job"))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("background_job_cancelled", job=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "background_job_failed",
                job=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every submitted task to finish."""
        while self._tasks:
            tasks = list(self._tasks)
            await asyncio.wait(tasks, timeout=timeout)
            if timeout is not None:
                break

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait up to `timeout` seconds, then cancel whatever is left."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
