"""Error taxonomy for the task intake service.

Errors fall into two groups:
- Request errors (validation, not found, ownership, conflict, persistence)
  surface synchronously to the HTTP caller.
- Pipeline errors happen inside a detached pipeline run and are recorded on
  the task as a ``failed`` terminal state instead of being raised to a caller.
"""

from __future__ import annotations


class TaskIntakeError(Exception):
    """Base class for every error raised by this package."""


class TaskValidationError(TaskIntakeError):
    """Task text is missing or too short."""


class TaskNotFoundError(TaskIntakeError):
    """No task exists with the requested id."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} does not exist")
        self.task_id = task_id


class TaskOwnershipError(TaskIntakeError):
    """Task exists but belongs to another user."""


class RunAlreadyActiveError(TaskIntakeError):
    """A pipeline run for this task is still in flight."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} is still being processed")
        self.task_id = task_id


class PersistenceError(TaskIntakeError):
    """Datastore operation failed."""


class PipelineError(TaskIntakeError):
    """Any failure inside a pipeline run."""


class LLMCallError(PipelineError):
    """LLM call failed permanently (non-retryable, or retries exhausted)."""


class InvalidLLMResponseError(PipelineError):
    """LLM text could not be parsed into a valid decision."""


class DispatchError(PipelineError):
    """Workflow engine rejected or failed a create/execute call."""


class DispatchConfigurationError(DispatchError):
    """Workflow engine credential is not configured."""


class TransientProviderError(Exception):
    """LLM provider reported a retryable overload. Internal to the LLM client."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
