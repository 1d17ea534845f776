from typing import Any, AsyncIterator

import pytest

from flowpilot.orchestration.errors import OracleParseError
from flowpilot.orchestration.result_pipeline import ResultPipeline, fallback_rendering
from flowpilot.orchestration.state import ExecutionRecord, Plan, ResolvedCall, RunState, Step
from flowpilot.services.messages import InMemoryMessageSink
from flowpilot.services.task_store import InMemoryTaskStore, TaskRecord
from tests.helpers.stubs import ScriptedOracle


class BrokenTaskStore(InMemoryTaskStore):
    async def record_step_result(self, task_id: str, index: int, success: bool, payload: dict[str, Any]) -> None:
        raise ConnectionError("database unavailable")


class HalfStreamingOracle(ScriptedOracle):
    async def stream_format(self, raw_result: Any, context: Any) -> AsyncIterator[str]:
        yield "partial "
        raise OracleParseError("stream dropped")


def _state() -> RunState:
    step = Step(index=1, capability="search", operation="find_docs")
    return RunState(task_id="task-1", objective="find docs", plan=Plan([step]), conversation_ref="conv-1")


def _call() -> ResolvedCall:
    return ResolvedCall(capability="search", resolved_operation="find_docs", args={"query": "alpha"})


@pytest.mark.asyncio
async def test_render_uses_formatter() -> None:
    pipeline = ResultPipeline(ScriptedOracle())
    assert await pipeline.render(_state(), _call(), {"content": "alpha"}) == "formatted find_docs"


@pytest.mark.asyncio
async def test_render_falls_back_to_markdown() -> None:
    oracle = ScriptedOracle()
    oracle.format_reply = OracleParseError("bad")
    pipeline = ResultPipeline(oracle)

    rendered = await pipeline.render(_state(), _call(), {"content": "alpha"})

    assert rendered == fallback_rendering({"content": "alpha"}, "find_docs")
    assert rendered.startswith("### find_docs result")
    assert '"content": "alpha"' in rendered


@pytest.mark.asyncio
async def test_large_results_ask_formatter_to_filter() -> None:
    oracle = ScriptedOracle()
    pipeline = ResultPipeline(oracle, long_result_chars=100)

    await pipeline.render(_state(), _call(), {"content": "x" * 500})

    assert "filter" in oracle.calls[-1][2]


@pytest.mark.asyncio
async def test_stream_yields_formatter_chunks() -> None:
    pipeline = ResultPipeline(ScriptedOracle())
    chunks = [chunk async for chunk in pipeline.stream(_state(), _call(), {"content": "alpha"})]
    assert chunks == ["rendered ", "result"]


@pytest.mark.asyncio
async def test_stream_failure_before_output_yields_fallback() -> None:
    oracle = ScriptedOracle()
    oracle.stream_chunks = OracleParseError("offline")
    pipeline = ResultPipeline(oracle)

    chunks = [chunk async for chunk in pipeline.stream(_state(), _call(), "plain text")]

    assert chunks == ["### find_docs result\n\nplain text"]


@pytest.mark.asyncio
async def test_stream_failure_midway_keeps_partial_output() -> None:
    pipeline = ResultPipeline(HalfStreamingOracle())
    chunks = [chunk async for chunk in pipeline.stream(_state(), _call(), "plain text")]
    assert chunks == ["partial "]


@pytest.mark.asyncio
async def test_language_model_results_are_not_reformatted() -> None:
    oracle = ScriptedOracle()
    pipeline = ResultPipeline(oracle)
    call = ResolvedCall(capability="llm", resolved_operation="summarize", is_language_model_operation=True)

    assert await pipeline.render(_state(), call, "already prose") == "already prose"
    assert [chunk async for chunk in pipeline.stream(_state(), call, "already prose")] == ["already prose"]
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_persistence_writes_store_messages_and_returns_scratchpad_updates() -> None:
    store = InMemoryTaskStore([TaskRecord(task_id="task-1")])
    sink = InMemoryMessageSink()
    pipeline = ResultPipeline(ScriptedOracle(), task_store=store, message_sink=sink)
    state = _state()
    step = state.plan.step(1)

    await pipeline.persist_raw(state, step, _call(), {"content": "alpha"})
    updates = await pipeline.persist_formatted(state, step, _call(), {"content": "alpha"}, "**alpha**")

    assert updates == {
        "step_1_result": {"content": "alpha"},
        "lastResult": {"content": "alpha"},
        "step_1_formatted": "**alpha**",
    }
    assert state.scratchpad == {}
    stored = await store.get_task("task-1")
    assert stored.step_results[0].success is True
    assert [message.metadata["kind"] for message in sink.for_conversation("conv-1")] == ["raw", "formatted"]


@pytest.mark.asyncio
async def test_persistence_failures_are_swallowed() -> None:
    sink = InMemoryMessageSink()
    pipeline = ResultPipeline(
        ScriptedOracle(),
        task_store=BrokenTaskStore([TaskRecord(task_id="task-1")]),
        message_sink=sink,
    )
    record = ExecutionRecord(step_index=1, capability="search", operation="find_docs", success=False, error="down")

    await pipeline.persist_failure(_state(), record)

    assert sink.messages[0].metadata["kind"] == "error"
    assert "down" in sink.messages[0].content


@pytest.mark.asyncio
async def test_auto_chain_without_publisher_is_identity() -> None:
    pipeline = ResultPipeline(ScriptedOracle())
    assert await pipeline.auto_chain(_call(), {"draft_id": "xyz"}) == {"draft_id": "xyz"}
