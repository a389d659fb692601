"""Pydantic models shared across API, pipeline, dispatcher, and storage.

Terms used in this file:
- Task: one user-submitted automation request and its processing state.
- Decision: the validated answer the LLM gave for a task.
- Dispatch: registering + triggering a workflow on the workflow engine.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

# Task lifecycle states. Transitions within one run only move forward:
# pending -> in-progress -> completed | failed
TaskStatus = Literal["pending", "in-progress", "completed", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Outcome tags written to Task.type.
TaskType = Literal[
    "gemini_processing",
    "automatable",
    "not_automatable",
    "processing_error",
    "retry",
    "error",
]

Complexity = Literal["easy", "intermediate", "complex"]


class Task(BaseModel):
    """Canonical task record shape returned by API/storage."""

    id: int
    # Owner email, matched against the authenticated caller.
    email: str
    # Trimmed task description.
    task: str
    status: TaskStatus = "pending"
    # Stored as JSON text; parsed back into a dict when possible.
    result: dict[str, Any] | str | None = None
    type: TaskType | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("result", mode="before")
    @classmethod
    def deserialize_result(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value


class LLMDecision(BaseModel):
    """Validated LLM answer for one task.

    Only the outcome fields are checked. Everything else the model returns
    (description, requirements, suggestions, ...) is kept as-is so the full
    decision can be stored on the task.
    """

    model_config = ConfigDict(extra="allow")

    automatable: StrictBool
    workflow: dict[str, Any] | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def check_outcome_fields(self) -> LLMDecision:
        if self.automatable and not self.workflow:
            raise ValueError("missing workflow for automatable task")
        if not self.automatable and not (self.reason and self.reason.strip()):
            raise ValueError("missing reason for non-automatable task")
        return self


class DispatchResult(BaseModel):
    """Confirmation returned by the workflow engine after create + execute."""

    workflow_id: str
    execution: dict[str, Any] = Field(default_factory=dict)


class CreateTaskRequest(BaseModel):
    """Request body for POST /api/task.

    Length rules are enforced by the task service so the caller gets the
    same 400 messages regardless of how the body was malformed.
    """

    content: str | None = None


class TaskEnvelope(BaseModel):
    """Response body for create and retry."""

    message: str
    task: Task


class TaskList(BaseModel):
    tasks: list[Task] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str
