"""Entry points used by the HTTP layer.

``create_task`` and ``retry_task`` persist synchronously, then hand the task
to the runner and return without waiting for the pipeline. The outcome is
visible later by reading the task.
"""

from __future__ import annotations

import logging

from .errors import TaskNotFoundError, TaskOwnershipError, TaskValidationError
from .models import Task
from .runner import PipelineRunner
from .storage import TaskStorage

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(
        self, *, storage: TaskStorage, runner: PipelineRunner, min_task_length: int = 3
    ) -> None:
        self.storage = storage
        self.runner = runner
        self.min_task_length = min_task_length

    def validate_content(self, content: str | None) -> str:
        """Return trimmed task text or raise ``TaskValidationError``."""
        text = (content or "").strip()
        if not text:
            raise TaskValidationError("Task content is required")
        if len(text) < self.min_task_length:
            raise TaskValidationError(
                f"Task content must be at least {self.min_task_length} characters long"
            )
        return text

    async def create_task(self, email: str, content: str | None) -> Task:
        text = self.validate_content(content)
        task = await self.storage.create_task(email, text)
        logger.info("task event=created task_id=%s email=%s", task.id, email)
        try:
            self.runner.submit(task.id)
        except Exception as exc:  # noqa: BLE001
            logger.error("task event=submit_failed task_id=%s error=%s", task.id, exc)
            await self.runner.pipeline.record_failure(
                task.id,
                {"success": False, "error": f"Failed to schedule processing: {exc}", "stage": "create"},
            )
        return task

    async def retry_task(self, task_id: int, *, email: str) -> Task:
        """Reset an owned task to ``pending`` and start a fresh pipeline run.

        Raises ``RunAlreadyActiveError`` while a previous run is still active.
        """
        await self.get_task(task_id, email=email)
        with self.runner.reserve(task_id):
            task = await self.storage.update_task(
                task_id, status="pending", type="retry", clear_result=True
            )
            self.runner.submit(task_id)
        logger.info("task event=retried task_id=%s email=%s", task_id, email)
        return task

    async def get_task(self, task_id: int, *, email: str) -> Task:
        task = await self.storage.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.email != email:
            raise TaskOwnershipError(f"Task {task_id} is not owned by the caller")
        return task

    async def list_tasks(self, email: str) -> list[Task]:
        return await self.storage.list_tasks(email)

    async def delete_task(self, task_id: int, *, email: str) -> None:
        await self.get_task(task_id, email=email)
        await self.storage.delete_task(task_id)
        logger.info("task event=deleted task_id=%s email=%s", task_id, email)
