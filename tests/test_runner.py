from __future__ import annotations

import asyncio
import logging

import pytest
from doubles import FakeLLMClient, InMemoryTaskStorage, RecordingDispatcher

from task_intake_api.app.errors import RunAlreadyActiveError
from task_intake_api.app.pipeline import TaskPipeline
from task_intake_api.app.runner import PipelineRunner


def _runner(llm: FakeLLMClient | None = None) -> tuple[PipelineRunner, InMemoryTaskStorage]:
    storage = InMemoryTaskStorage()
    pipeline = TaskPipeline(
        storage=storage,
        llm_client=llm or FakeLLMClient(),
        dispatcher=RecordingDispatcher(),
    )
    return PipelineRunner(pipeline), storage


def test_submit_tracks_job_until_it_finishes() -> None:
    runner, storage = _runner()

    async def scenario():
        task = await storage.create_task("a@example.com", "send email")
        runner.submit(task.id)
        assert runner.is_active(task.id)
        await runner.drain()
        assert not runner.is_active(task.id)
        return await storage.get_task(task.id)

    finished = asyncio.run(scenario())
    assert finished is not None
    assert finished.status == "completed"


def test_second_submit_for_active_task_is_rejected() -> None:
    runner, storage = _runner(FakeLLMClient(delay_s=0.05))

    async def scenario():
        task = await storage.create_task("a@example.com", "send email")
        runner.submit(task.id)
        with pytest.raises(RunAlreadyActiveError):
            runner.submit(task.id)
        with pytest.raises(RunAlreadyActiveError):
            with runner.reserve(task.id):
                pass
        await runner.drain()
        # Free again once the first run is done.
        runner.submit(task.id)
        await runner.drain()

    asyncio.run(scenario())


def test_reservation_blocks_other_reservations() -> None:
    runner, _ = _runner()
    with runner.reserve(7):
        assert runner.is_active(7)
        assert runner.active_task_ids() == [7]
        with pytest.raises(RunAlreadyActiveError):
            with runner.reserve(7):
                pass
    assert not runner.is_active(7)


def test_crashing_job_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    runner, _ = _runner()

    async def boom(task_id: int) -> None:
        raise RuntimeError(f"boom {task_id}")

    runner.pipeline.run = boom  # type: ignore[method-assign]

    async def scenario():
        runner.submit(3)
        await runner.drain()

    with caplog.at_level(logging.ERROR, logger="task_intake_api.app.runner"):
        asyncio.run(scenario())

    assert not runner.is_active(3)
    assert any("event=crashed task_id=3" in record.getMessage() for record in caplog.records)


def test_drain_gives_up_after_timeout_and_reports_running_ids() -> None:
    runner, storage = _runner(FakeLLMClient(delay_s=5.0))

    async def scenario():
        task = await storage.create_task("a@example.com", "send email")
        runner.submit(task.id)
        still_running = await runner.drain(timeout_s=0.05)
        for job in list(runner._jobs.values()):
            job.cancel()
        await runner.drain()
        return task.id, still_running

    task_id, still_running = asyncio.run(scenario())
    assert still_running == [task_id]
    assert not runner.is_active(task_id)


def test_drain_without_timeout_reports_nothing_running() -> None:
    runner, storage = _runner(FakeLLMClient(delay_s=0.01))

    async def scenario():
        task = await storage.create_task("a@example.com", "send email")
        runner.submit(task.id)
        return await runner.drain()

    assert asyncio.run(scenario()) == []
