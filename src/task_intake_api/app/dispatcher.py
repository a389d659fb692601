"""n8n workflow dispatch: register a workflow, then execute it.

Both calls must succeed. If execute fails after create succeeded, the
workflow stays registered on n8n; the error still propagates.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .errors import DispatchConfigurationError, DispatchError
from .models import DispatchResult

logger = logging.getLogger(__name__)


class WorkflowDispatcher(Protocol):
    async def dispatch(self, workflow: dict[str, Any], *, task_id: int) -> DispatchResult: ...


class N8nWorkflowDispatcher:
    """Dispatcher for the n8n public REST API."""

    create_path = "/api/v1/workflows"
    execute_path = "/api/v1/workflows/{workflow_id}/execute"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._transport = transport

    async def dispatch(self, workflow: dict[str, Any], *, task_id: int) -> DispatchResult:
        if not self.api_key:
            raise DispatchConfigurationError("N8N_API_KEY is not configured")

        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-N8N-API-KEY": self.api_key},
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            created = await self._post(
                client, self.create_path, {**workflow, "active": True}, step="create"
            )
            workflow_id = created.get("id")
            if workflow_id in (None, ""):
                raise DispatchError("n8n create response did not include a workflow id")
            logger.info(
                "dispatch event=workflow_created task_id=%s workflow_id=%s", task_id, workflow_id
            )

            execution = await self._post(
                client,
                self.execute_path.format(workflow_id=workflow_id),
                {},
                step="execute",
            )
        logger.info(
            "dispatch event=workflow_executed task_id=%s workflow_id=%s", task_id, workflow_id
        )
        return DispatchResult(workflow_id=str(workflow_id), execution=execution)

    @staticmethod
    async def _post(
        client: httpx.AsyncClient, path: str, payload: dict[str, Any], *, step: str
    ) -> dict[str, Any]:
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DispatchError(
                f"n8n {step} request failed with status {exc.response.status_code}: "
                f"{exc.response.text[:400]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"n8n {step} request failed: {exc}") from exc

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise DispatchError(f"n8n {step} returned a non-JSON response") from exc
        if not isinstance(body, dict):
            return {"data": body}
        return body
