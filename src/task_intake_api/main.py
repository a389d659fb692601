"""FastAPI application wiring for the task intake service.

Terms used in this file:
- FastAPI app: the main web application object.
- app.state: shared runtime objects (storage, runner, service, llm client).
- Lifespan: startup/shutdown hook; runs the schema migration and waits for
  in-flight pipeline runs on shutdown.
- Identity: the auth layer in front of this service forwards the caller's
  email in the ``X-User-Email`` header.

Run with ``uvicorn task_intake_api.main:create_app --factory``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .app.dispatcher import N8nWorkflowDispatcher, WorkflowDispatcher
from .app.errors import (
    PersistenceError,
    RunAlreadyActiveError,
    TaskIntakeError,
    TaskNotFoundError,
    TaskOwnershipError,
    TaskValidationError,
)
from .app.llm import LLMClient, build_llm_client
from .app.models import CreateTaskRequest, MessageResponse, Task, TaskEnvelope, TaskList
from .app.pipeline import TaskPipeline
from .app.runner import PipelineRunner
from .app.service import TaskService
from .app.settings import Settings, get_settings
from .app.storage import PostgresTaskStorage, TaskStorage

logger = logging.getLogger(__name__)

# Domain error -> HTTP status. First match in order wins.
ERROR_STATUS: tuple[tuple[type[TaskIntakeError], int], ...] = (
    (TaskValidationError, status.HTTP_400_BAD_REQUEST),
    (TaskNotFoundError, status.HTTP_404_NOT_FOUND),
    (TaskOwnershipError, status.HTTP_403_FORBIDDEN),
    (RunAlreadyActiveError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def create_app(
    settings: Settings | None = None,
    *,
    storage: TaskStorage | None = None,
    llm_client: LLMClient | None = None,
    dispatcher: WorkflowDispatcher | None = None,
) -> FastAPI:
    """Application factory.

    Collaborators can be injected (tests); otherwise they are built from
    ``settings``. Fails fast when no database URL is configured.
    """
    settings = settings or get_settings()
    _configure_logging(settings.log_level)

    if storage is None:
        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set TASK_INTAKE_DATABASE_URL or DATABASE_URL."
            )
        storage = PostgresTaskStorage(database_url=database_url)

    if llm_client is None:
        llm_client = build_llm_client(
            provider=settings.llm_provider,
            api_key=settings.resolved_gemini_api_key(),
            base_url=settings.gemini_base_url,
            max_attempts=settings.llm_max_attempts,
            retry_delay_s=settings.llm_retry_delay_s,
            timeout_s=settings.llm_timeout_s,
            probe_model=settings.easy_model,
        )
    if dispatcher is None:
        dispatcher = N8nWorkflowDispatcher(
            base_url=settings.n8n_base_url,
            api_key=settings.resolved_n8n_api_key(),
            timeout_s=settings.n8n_timeout_s,
        )

    pipeline = TaskPipeline(
        storage=storage,
        llm_client=llm_client,
        dispatcher=dispatcher,
        tier_models=settings.tier_models(),
    )
    runner = PipelineRunner(pipeline)
    service = TaskService(
        storage=storage, runner=runner, min_task_length=settings.min_task_length
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.storage.migrate()
        logger.info("app event=startup name=%s", settings.app_name)
        yield
        pending = runner.active_task_ids()
        if pending:
            logger.info("app event=shutdown_wait task_ids=%s", pending)
        still_running = await runner.drain(settings.shutdown_grace_s)
        if still_running:
            logger.warning(
                "app event=shutdown_timeout grace_s=%s task_ids=%s",
                settings.shutdown_grace_s,
                still_running,
            )

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.llm_client = llm_client
    app.state.runner = runner
    app.state.service = service

    @app.exception_handler(TaskIntakeError)
    async def domain_error_handler(_: Request, exc: TaskIntakeError) -> JSONResponse:
        for error_type, status_code in ERROR_STATUS:
            if isinstance(exc, error_type):
                if status_code >= 500:
                    logger.error("request event=failed error=%s", exc)
                return JSONResponse(status_code=status_code, content={"error": str(exc)})
        logger.exception("request event=unmapped_error error=%s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("request event=unhandled error=%s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    def current_email(x_user_email: str | None = Header(default=None)) -> str:
        email = (x_user_email or "").strip()
        if not email:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized: User not authenticated",
            )
        return email

    @app.get("/health")
    @app.get("/healthz")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/api/task", response_model=TaskEnvelope, status_code=status.HTTP_201_CREATED)
    async def create_task(
        payload: CreateTaskRequest, email: str = Depends(current_email)
    ) -> TaskEnvelope:
        task = await app.state.service.create_task(email, payload.content)
        return TaskEnvelope(message="Task created successfully", task=task)

    @app.get("/api/tasks", response_model=TaskList)
    async def list_tasks(email: str = Depends(current_email)) -> TaskList:
        return TaskList(tasks=await app.state.service.list_tasks(email))

    @app.get("/api/task/{task_id}", response_model=Task)
    async def get_task(task_id: int, email: str = Depends(current_email)) -> Task:
        return await app.state.service.get_task(task_id, email=email)

    @app.post(
        "/api/task/{task_id}/retry",
        response_model=TaskEnvelope,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def retry_task(task_id: int, email: str = Depends(current_email)) -> TaskEnvelope:
        task = await app.state.service.retry_task(task_id, email=email)
        return TaskEnvelope(message="Task queued for retry", task=task)

    @app.delete("/api/task/{task_id}", response_model=MessageResponse)
    async def delete_task(task_id: int, email: str = Depends(current_email)) -> MessageResponse:
        await app.state.service.delete_task(task_id, email=email)
        return MessageResponse(message="Task deleted successfully")

    @app.get("/api/llm/status")
    async def llm_status(_: str = Depends(current_email)) -> dict[str, Any]:
        check = getattr(app.state.llm_client, "check_connection", None)
        if check is None:
            return {"gemini": False, "error": "Connection check not supported"}
        return await check()

    return app


def _configure_logging(level: str) -> None:
    """Install a root handler once; later calls only adjust the level."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("task_intake_api").setLevel(level.upper())
