from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..core.logging import get_logger
from ..orchestration.contracts import PlannedStepPayload
from ..orchestration.enums import TaskStatus

logger = get_logger(name=__name__)


class StepResultEntry(BaseModel):
    index: int = Field(ge=1)
    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TaskRecord(BaseModel):
    task_id: str = Field(min_length=1)
    objective: str = Field(default="")
    principal: str | None = None
    conversation_ref: str | None = None
    plan: list[PlannedStepPayload] = Field(default_factory=list)
    status: TaskStatus = Field(default=TaskStatus.QUEUED)
    step_results: list[StepResultEntry] = Field(default_factory=list)
    final_status: TaskStatus | None = None
    final_summary: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class TaskStore(Protocol):
    async def get_task(self, task_id: str) -> TaskRecord | None:
        ...

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        ...

    async def record_step_result(self, task_id: str, index: int, success: bool, payload: dict[str, Any]) -> None:
        ...

    async def record_final_result(self, task_id: str, status: TaskStatus, summary: str) -> None:
        ...


class InMemoryTaskStore:
    """Process-local task store used for tests and single-node runs."""

    def __init__(self, tasks: list[TaskRecord] | None = None) -> None:
        self._tasks: dict[str, TaskRecord] = {task.task_id: task for task in tasks or []}
        self._lock = asyncio.Lock()

    async def add(self, task: TaskRecord) -> None:
        async with self._lock:
            self._tasks[task.task_id] = task

    async def get_task(self, task_id: str) -> TaskRecord | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        async with self._lock:
            task = self._require(task_id)
            task.status = status
            task.updated_at = datetime.now(timezone.utc)
        logger.debug("task_status_updated", task_id=task_id, status=status.value)

    async def record_step_result(self, task_id: str, index: int, success: bool, payload: dict[str, Any]) -> None:
        async with self._lock:
            task = self._require(task_id)
            task.step_results.append(StepResultEntry(index=index, success=success, payload=payload))
            task.updated_at = datetime.now(timezone.utc)

    async def record_final_result(self, task_id: str, status: TaskStatus, summary: str) -> None:
        async with self._lock:
            task = self._require(task_id)
            task.final_status = status
            task.final_summary = summary
            task.updated_at = datetime.now(timezone.utc)

    def _require(self, task_id: str) -> TaskRecord:
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(f"unknown task '{task_id}'")
        return task


__all__ = ["InMemoryTaskStore", "StepResultEntry", "TaskRecord", "TaskStore"]
