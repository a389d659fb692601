"""Task processing pipeline.

One ``run`` drives one task through:

    pending -> in-progress -> completed | failed

1) Persist ``in-progress`` before any external call.
2) Pick a model, ask the LLM, parse + validate its answer.
3) Not automatable: record the stated reason as ``failed``.
4) Automatable: hand the workflow to the dispatcher, record ``completed``.
5) Any error in 2-4: record ``failed`` with the error and a trace.

A run always ends in a terminal state or, when the datastore itself is
failing, in a logged best-effort attempt to write one.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .dispatcher import WorkflowDispatcher
from .llm import LLMClient
from .model_selection import select_model
from .models import Task, TaskStatus, TaskType
from .parser import parse_llm_response
from .storage import TaskStorage

logger = logging.getLogger(__name__)


class TaskPipeline:
    def __init__(
        self,
        *,
        storage: TaskStorage,
        llm_client: LLMClient,
        dispatcher: WorkflowDispatcher,
        tier_models: Mapping[str, str] | None = None,
    ) -> None:
        self.storage = storage
        self.llm_client = llm_client
        self.dispatcher = dispatcher
        self.tier_models = dict(tier_models) if tier_models else None

    async def run(self, task_id: int) -> Task | None:
        """Run one task to a terminal state and return the stored record.

        Returns ``None`` only when the terminal state could not be persisted.
        """
        try:
            task = await self.storage.update_task(
                task_id, status="in-progress", type="gemini_processing"
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("task_run event=start_failed task_id=%s error=%s", task_id, exc)
            await self.record_failure(
                task_id,
                {"success": False, "error": f"Failed to start processing: {exc}", "stage": "start"},
                task_type="error",
            )
            return None

        model = select_model(task.task, self.tier_models)
        provider = self.llm_client.provider
        logger.info(
            "task_run event=start task_id=%s provider=%s model=%s status=%s",
            task_id,
            provider,
            model,
            task.status,
        )

        try:
            raw = await self.llm_client.generate(task.task, model)
            decision = parse_llm_response(raw)
            decision_payload = decision.model_dump(mode="json", exclude_none=True)

            if not decision.automatable:
                logger.info("task_run event=declined task_id=%s model=%s", task_id, model)
                return await self._finish(
                    task_id,
                    status="failed",
                    task_type="not_automatable",
                    result={
                        "success": True,
                        "provider": provider,
                        "model": model,
                        "result": decision_payload,
                        "reason": decision.reason,
                        "completed_at": _now_iso(),
                    },
                )

            dispatch = await self.dispatcher.dispatch(decision.workflow or {}, task_id=task_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_run event=failed task_id=%s model=%s error_type=%s error=%s",
                task_id,
                model,
                type(exc).__name__,
                exc,
            )
            return await self._finish(
                task_id,
                status="failed",
                task_type="processing_error",
                result={
                    "success": False,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "trace": traceback.format_exc(),
                    "failed_at": _now_iso(),
                },
            )

        logger.info(
            "task_run event=completed task_id=%s model=%s workflow_id=%s",
            task_id,
            model,
            dispatch.workflow_id,
        )
        return await self._finish(
            task_id,
            status="completed",
            task_type="automatable",
            result={
                "success": True,
                "provider": provider,
                "model": model,
                "result": decision_payload,
                "dispatch": dispatch.model_dump(mode="json"),
                "completed_at": _now_iso(),
            },
        )

    async def record_failure(
        self, task_id: int, result: dict[str, Any], *, task_type: TaskType = "error"
    ) -> Task | None:
        """Best-effort write of a ``failed`` state. Errors are logged, not raised."""
        payload = {"failed_at": _now_iso(), **result}
        try:
            return await self.storage.update_task(
                task_id, status="failed", result=payload, type=task_type
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "task_run event=compensation_failed task_id=%s error=%s", task_id, exc
            )
            return None

    async def _finish(
        self, task_id: int, *, status: TaskStatus, task_type: TaskType, result: dict[str, Any]
    ) -> Task | None:
        try:
            return await self.storage.update_task(
                task_id, status=status, result=result, type=task_type
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "task_run event=persist_failed task_id=%s status=%s error=%s",
                task_id,
                status,
                exc,
            )
            return await self.record_failure(
                task_id,
                {"success": False, "error": f"Failed to persist result: {exc}", "stage": "finish"},
            )


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()
