from __future__ import annotations

import asyncio

import pytest
from doubles import FakeLLMClient, InMemoryTaskStorage, RecordingDispatcher

from task_intake_api.app.errors import (
    PersistenceError,
    RunAlreadyActiveError,
    TaskValidationError,
)
from task_intake_api.app.pipeline import TaskPipeline
from task_intake_api.app.runner import PipelineRunner
from task_intake_api.app.service import TaskService


def _service(llm: FakeLLMClient | None = None) -> tuple[TaskService, InMemoryTaskStorage]:
    storage = InMemoryTaskStorage()
    pipeline = TaskPipeline(
        storage=storage, llm_client=llm or FakeLLMClient(), dispatcher=RecordingDispatcher()
    )
    return TaskService(storage=storage, runner=PipelineRunner(pipeline)), storage


def test_create_returns_pending_task_before_pipeline_runs() -> None:
    service, storage = _service()

    async def scenario():
        task = await service.create_task("a@example.com", "  send email  ")
        assert task.status == "pending"
        assert task.task == "send email"
        assert service.runner.is_active(task.id)
        await service.runner.drain()
        return await storage.get_task(task.id)

    finished = asyncio.run(scenario())
    assert finished is not None
    assert finished.status == "completed"


@pytest.mark.parametrize("content", [None, "", "  ", "ab", " a "])
def test_create_rejects_short_text_before_any_row(content) -> None:
    service, storage = _service()
    with pytest.raises(TaskValidationError):
        asyncio.run(service.create_task("a@example.com", content))
    assert asyncio.run(storage.list_tasks("a@example.com")) == []


def test_create_surfaces_persistence_error() -> None:
    service, storage = _service()

    async def failing_create(email: str, task_text: str):
        raise PersistenceError("database unavailable")

    storage.create_task = failing_create  # type: ignore[method-assign]
    with pytest.raises(PersistenceError):
        asyncio.run(service.create_task("a@example.com", "send email"))
    assert service.runner.active_task_ids() == []


def test_create_marks_task_failed_when_scheduling_fails() -> None:
    service, storage = _service()

    def refuse(task_id: int):
        raise RuntimeError("runner closed")

    service.runner.submit = refuse  # type: ignore[method-assign]

    task = asyncio.run(service.create_task("a@example.com", "send email"))
    stored = asyncio.run(storage.get_task(task.id))
    assert stored is not None
    assert stored.status == "failed"
    assert stored.type == "error"
    assert "runner closed" in stored.result["error"]


def test_concurrent_retries_only_start_one_run() -> None:
    llm = FakeLLMClient(delay_s=0.05)
    service, _ = _service(llm)

    async def scenario():
        task = await service.create_task("a@example.com", "send email")
        await service.runner.drain()
        results = await asyncio.gather(
            service.retry_task(task.id, email="a@example.com"),
            service.retry_task(task.id, email="a@example.com"),
            return_exceptions=True,
        )
        await service.runner.drain()
        return results

    results = asyncio.run(scenario())
    assert sum(isinstance(item, RunAlreadyActiveError) for item in results) == 1
    assert len(llm.calls) == 2
