"""Supervised background jobs for pipeline runs.

Each run is an asyncio task tracked by task id. The runner:
- refuses a second job for a task id that still has one in flight,
- logs anything that escapes a run instead of letting it vanish,
- lets callers wait for outstanding jobs (shutdown, tests).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from functools import partial

from .errors import RunAlreadyActiveError
from .pipeline import TaskPipeline

logger = logging.getLogger(__name__)


class PipelineRunner:
    def __init__(self, pipeline: TaskPipeline) -> None:
        self.pipeline = pipeline
        self._jobs: dict[int, asyncio.Task[object]] = {}
        # Task ids claimed by a caller that is preparing a new run (retry reset).
        self._reserved: set[int] = set()

    def is_active(self, task_id: int) -> bool:
        return task_id in self._jobs or task_id in self._reserved

    def active_task_ids(self) -> list[int]:
        return sorted(set(self._jobs) | self._reserved)

    @contextmanager
    def reserve(self, task_id: int) -> Iterator[None]:
        """Claim ``task_id`` while the caller prepares a run.

        Raises ``RunAlreadyActiveError`` when a job or another reservation
        already holds the id. ``submit`` may be called inside the block.
        """
        if self.is_active(task_id):
            raise RunAlreadyActiveError(task_id)
        self._reserved.add(task_id)
        try:
            yield
        finally:
            self._reserved.discard(task_id)

    def submit(self, task_id: int) -> asyncio.Task[object]:
        """Schedule a pipeline run on the running event loop."""
        if task_id in self._jobs:
            raise RunAlreadyActiveError(task_id)
        job = asyncio.create_task(self.pipeline.run(task_id), name=f"pipeline-run-{task_id}")
        self._jobs[task_id] = job
        job.add_done_callback(partial(self._on_done, task_id))
        logger.info("runner event=submitted task_id=%s active=%d", task_id, len(self._jobs))
        return job

    async def drain(self, timeout_s: float | None = None) -> list[int]:
        """Wait for every job submitted so far, at most ``timeout_s`` seconds.

        Returns the task ids whose jobs were still running when time ran out.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout_s is None else loop.time() + timeout_s
        while self._jobs:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(list(self._jobs.values()), timeout=remaining)
        return sorted(task_id for task_id, job in self._jobs.items() if not job.done())

    def _on_done(self, task_id: int, job: asyncio.Task[object]) -> None:
        if self._jobs.get(task_id) is job:
            del self._jobs[task_id]
        if job.cancelled():
            logger.warning("runner event=cancelled task_id=%s", task_id)
            return
        exc = job.exception()
        if exc is not None:
            logger.error(
                "runner event=crashed task_id=%s error=%s", task_id, exc, exc_info=exc
            )
            return
        logger.info("runner event=finished task_id=%s active=%d", task_id, len(self._jobs))
