from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from ..core.config import Settings, get_settings
from ..core.logging import configure_logging, get_logger
from ..orchestration.enums import ExecutionStrategy, TaskStatus
from ..orchestration.errors import PlanMissing
from ..orchestration.events import EngineEvent, EventType, make_event
from ..orchestration.orchestrator import Orchestrator, build_final_summary
from .llm import LLMService
from .messages import MessageSink, NullMessageSink
from .oracle import LLMOracle, Oracle
from .task_store import TaskStore
from .tools import HTTPToolAdapter, ToolAdapter

logger = get_logger(name=__name__)

EventStream = Callable[[EngineEvent], Awaitable[None]]


class TaskExecutionService:
    """Runs one stored task end to end and keeps its status in step with the run."""

    def __init__(self, *, task_store: TaskStore, orchestrator: Orchestrator) -> None:
        self._task_store = task_store
        self._orchestrator = orchestrator

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        task_store: TaskStore,
        tools: ToolAdapter | None = None,
        oracle: Oracle | None = None,
        message_sink: MessageSink | None = None,
        strategy: ExecutionStrategy | str | None = None,
    ) -> "TaskExecutionService":
        resolved = settings or get_settings()
        configure_logging(resolved.observability.log_level, json_logs=resolved.observability.json_logs)
        orchestrator = Orchestrator(
            tools=tools or HTTPToolAdapter.from_settings(resolved),
            oracle=oracle or LLMOracle(LLMService.from_settings(resolved)),
            strategy=strategy,
            settings=resolved,
            task_store=task_store,
            message_sink=message_sink or NullMessageSink(),
        )
        return cls(task_store=task_store, orchestrator=orchestrator)

    async def execute_task(
        self,
        task_id: str,
        stream: EventStream | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Execute a stored task, forwarding every engine event to ``stream``.

        Returns whether every step succeeded. ``PlanMissing`` and unexpected
        errors propagate after the task has been marked failed.
        """
        with structlog.contextvars.bound_contextvars(task_id=task_id):
            return await self._run(task_id, stream, cancel_event)

    async def _run(self, task_id: str, stream: EventStream | None, cancel_event: asyncio.Event | None) -> bool:
        emit = stream or _discard
        task = await self._task_store.get_task(task_id)
        try:
            if task is None:
                raise PlanMissing(f"task '{task_id}' does not exist")
            state = self._orchestrator.prepare(
                task.task_id,
                task.objective,
                task.plan,
                principal=task.principal,
                conversation_ref=task.conversation_ref,
            )
        except PlanMissing as exc:
            logger.error("task_plan_missing", task_id=task_id, error=str(exc))
            await emit(make_event(EventType.ERROR, task_id=task_id, message=str(exc), error_type=type(exc).__name__))
            if task is not None:
                await self._set_status(task_id, TaskStatus.FAILED)
            raise

        await self._set_status(task_id, TaskStatus.IN_PROGRESS)
        logger.info("task_execution_started", task_id=task_id, steps=state.total)

        success = False
        final_status = TaskStatus.FAILED
        try:
            async for event in self._orchestrator.execute(state, cancel_event=cancel_event):
                await emit(event)
                if event.event == EventType.FINAL_RESULT.value:
                    success = bool(event.data.get("success"))
                    final_status = TaskStatus.COMPLETED if success else TaskStatus.FAILED
                    await self._record_final(task_id, final_status, str(event.data.get("summary", "")))
                elif event.event == EventType.TASK_CANCELLED.value:
                    final_status = TaskStatus.CANCELLED
                    await self._record_final(task_id, final_status, build_final_summary(state))
        except Exception:
            await self._finish(task_id, TaskStatus.FAILED, False, emit)
            raise

        await self._finish(task_id, final_status, success, emit)
        return success

    async def _finish(self, task_id: str, status: TaskStatus, success: bool, emit: EventStream) -> None:
        await self._set_status(task_id, status)
        logger.info("task_execution_finished", task_id=task_id, status=status.value, success=success)
        await emit(make_event(EventType.TASK_EXECUTION_COMPLETE, task_id=task_id, success=success, status=status.value))

    async def _set_status(self, task_id: str, status: TaskStatus) -> None:
        try:
            await self._task_store.set_status(task_id, status)
        except Exception:
            logger.exception("task_status_persist_failed", task_id=task_id, status=status.value)

    async def _record_final(self, task_id: str, status: TaskStatus, summary: str) -> None:
        try:
            await self._task_store.record_final_result(task_id, status, summary)
        except Exception:
            logger.exception("task_final_result_persist_failed", task_id=task_id)


async def _discard(event: EngineEvent) -> None:  # noqa: ARG001
    return None


__all__ = ["EventStream", "TaskExecutionService"]
