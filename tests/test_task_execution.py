import asyncio

import pytest
import structlog

from flowpilot.core.config import get_settings
from flowpilot.orchestration.enums import ExecutionStrategy, TaskStatus
from flowpilot.orchestration.errors import PlanMissing
from flowpilot.orchestration.orchestrator import Orchestrator
from flowpilot.services.task_execution import TaskExecutionService
from flowpilot.services.task_store import InMemoryTaskStore, TaskRecord
from flowpilot.tools.exceptions import InvocationFailed
from tests.helpers.stubs import RecordingSleep, RecordingStream, ScriptedOracle, ScriptedToolAdapter


class FlakyStatusStore(InMemoryTaskStore):
    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        raise ConnectionError("status table locked")


def _task(task_id: str = "task-1", plan=None) -> TaskRecord:
    return TaskRecord(
        task_id=task_id,
        objective="collect docs",
        conversation_ref="conv-1",
        plan=plan
        if plan is not None
        else [
            {"capability": "docs", "operation": "fetch_a", "input": {"q": 1}},
            {"capability": "docs", "operation": "fetch_b", "input": {"q": 2}},
        ],
    )


def _service(store, tools=None, oracle=None, **engine) -> TaskExecutionService:
    settings = get_settings({"environment": "test", "engine": {"retry_base_delay_seconds": 0.1, **engine}})
    orchestrator = Orchestrator(
        tools=tools or ScriptedToolAdapter(),
        oracle=oracle or ScriptedOracle(),
        settings=settings,
        task_store=store,
        sleep=RecordingSleep(),
    )
    return TaskExecutionService(task_store=store, orchestrator=orchestrator)


@pytest.mark.asyncio
async def test_successful_task_is_marked_completed():
    store = InMemoryTaskStore([_task()])
    stream = RecordingStream()

    success = await _service(store).execute_task("task-1", stream)

    assert success is True
    task = await store.get_task("task-1")
    assert task.status is TaskStatus.COMPLETED
    assert task.final_status is TaskStatus.COMPLETED
    assert task.final_summary.startswith("## Workflow Execution Summary")
    assert [entry.index for entry in task.step_results] == [1, 2]
    assert stream.names[0] == "execution_start"
    assert stream.names[-2:] == ["final_result", "task_execution_complete"]
    assert stream.events[-1].data == {"task_id": "task-1", "success": True, "status": "completed"}


@pytest.mark.asyncio
async def test_task_with_failed_step_is_marked_failed():
    store = InMemoryTaskStore([_task()])
    tools = ScriptedToolAdapter()
    tools.script("docs", "fetch_b", InvocationFailed("down"))
    stream = RecordingStream()

    success = await _service(store, tools=tools, max_attempts=1).execute_task("task-1", stream)

    assert success is False
    task = await store.get_task("task-1")
    assert task.status is TaskStatus.FAILED
    assert "step_error" in stream.names
    assert stream.names[-1] == "task_execution_complete"


@pytest.mark.asyncio
async def test_unknown_task_raises_plan_missing():
    store = InMemoryTaskStore()
    stream = RecordingStream()

    with pytest.raises(PlanMissing):
        await _service(store).execute_task("ghost", stream)

    assert stream.names == ["error"]


@pytest.mark.asyncio
async def test_empty_plan_fails_task_before_running():
    store = InMemoryTaskStore([_task(plan=[])])
    stream = RecordingStream()

    with pytest.raises(PlanMissing):
        await _service(store).execute_task("task-1", stream)

    task = await store.get_task("task-1")
    assert task.status is TaskStatus.FAILED
    assert stream.names == ["error"]


@pytest.mark.asyncio
async def test_cancelled_task_is_marked_cancelled():
    store = InMemoryTaskStore([_task()])
    cancel = asyncio.Event()
    cancel.set()
    stream = RecordingStream()

    success = await _service(store).execute_task("task-1", stream, cancel_event=cancel)

    assert success is False
    task = await store.get_task("task-1")
    assert task.status is TaskStatus.CANCELLED
    assert stream.names == ["execution_start", "task_cancelled", "task_execution_complete"]


@pytest.mark.asyncio
async def test_cancelled_task_keeps_summary_of_executed_steps():
    store = InMemoryTaskStore([_task()])
    cancel = asyncio.Event()
    stream = RecordingStream()

    async def cancel_after_first_step(event):
        await stream(event)
        if event.event == "step_complete":
            cancel.set()

    success = await _service(store).execute_task("task-1", cancel_after_first_step, cancel_event=cancel)

    assert success is False
    task = await store.get_task("task-1")
    assert task.final_status is TaskStatus.CANCELLED
    assert "- Completed: 1" in task.final_summary
    assert "- Not executed: 1" in task.final_summary
    assert stream.names[-2:] == ["task_cancelled", "task_execution_complete"]


@pytest.mark.asyncio
async def test_task_id_is_bound_to_log_context_only_during_the_run():
    store = InMemoryTaskStore([_task()])
    seen = []

    async def capture_context(event):
        seen.append(structlog.contextvars.get_contextvars().get("task_id"))

    await _service(store).execute_task("task-1", capture_context)

    assert seen and set(seen) == {"task-1"}
    assert "task_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_unexpected_errors_mark_task_failed_and_propagate():
    store = InMemoryTaskStore([_task()])
    tools = ScriptedToolAdapter()
    tools.script("docs", "fetch_a", ValueError("corrupt payload"))
    stream = RecordingStream()

    with pytest.raises(ValueError):
        await _service(store, tools=tools).execute_task("task-1", stream)

    task = await store.get_task("task-1")
    assert task.status is TaskStatus.FAILED
    assert stream.names[-2:] == ["error", "task_execution_complete"]


@pytest.mark.asyncio
async def test_status_persistence_failures_do_not_stop_the_run():
    store = FlakyStatusStore([_task()])

    assert await _service(store).execute_task("task-1") is True


def test_from_settings_wires_supplied_collaborators():
    store = InMemoryTaskStore()
    service = TaskExecutionService.from_settings(
        get_settings({"environment": "test"}),
        task_store=store,
        tools=ScriptedToolAdapter(),
        oracle=ScriptedOracle(),
        strategy="sequential",
    )

    assert service._orchestrator.strategy is ExecutionStrategy.SEQUENTIAL
