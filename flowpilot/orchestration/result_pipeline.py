"""Post-execution side effects for a step: chaining, rendering and persistence.

The pipeline never mutates ``RunState``. It returns scratchpad updates that
the orchestrator applies, and it logs and swallows persistence failures so a
storage hiccup cannot fail a step.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, AsyncIterator

from ..core.logging import get_logger
from .auto_publish import AutoPublisher
from .errors import OracleParseError
from .state import (
    LAST_RESULT_KEY,
    ExecutionRecord,
    ResolvedCall,
    RunState,
    Step,
    step_formatted_key,
    step_result_key,
)

if TYPE_CHECKING:
    from ..services.messages import MessageSink
    from ..services.oracle import Oracle
    from ..services.task_store import TaskStore

logger = get_logger(name=__name__)


def fallback_rendering(raw_result: Any, operation: str) -> str:
    if isinstance(raw_result, str):
        return f"### {operation} result\n\n{raw_result}"
    body = json.dumps(raw_result, ensure_ascii=False, indent=2, default=str)
    return f"### {operation} result\n\n```json\n{body}\n```"


class ResultPipeline:
    def __init__(
        self,
        oracle: Oracle,
        *,
        publisher: AutoPublisher | None = None,
        task_store: TaskStore | None = None,
        message_sink: MessageSink | None = None,
        long_result_chars: int = 3000,
    ) -> None:
        self._oracle = oracle
        self._publisher = publisher
        self._task_store = task_store
        self._message_sink = message_sink
        self._long_result_chars = long_result_chars

    async def auto_chain(self, call: ResolvedCall, raw_result: Any, *, principal: str | None = None) -> Any:
        if self._publisher is None or call.is_language_model_operation:
            return raw_result
        return await self._publisher.chain(
            call.capability,
            call.resolved_operation,
            raw_result,
            principal=principal,
        )

    async def render(self, state: RunState, call: ResolvedCall, raw_result: Any) -> str:
        """Format a non-terminal result in one piece."""
        if call.is_language_model_operation:
            return str(raw_result)
        try:
            return await self._oracle.format(raw_result, self._format_context(state, call, raw_result))
        except OracleParseError as exc:
            logger.warning("result_format_failed", operation=call.resolved_operation, error=str(exc))
            return fallback_rendering(raw_result, call.resolved_operation)

    async def stream(self, state: RunState, call: ResolvedCall, raw_result: Any) -> AsyncIterator[str]:
        """Yield the rendering of a terminal result chunk by chunk.

        If the stream fails before producing anything the fallback rendering is
        yielded as a single chunk; a stream that breaks midway simply ends.
        """
        if call.is_language_model_operation:
            yield str(raw_result)
            return
        produced = False
        try:
            async for chunk in self._oracle.stream_format(raw_result, self._format_context(state, call, raw_result)):
                if chunk:
                    produced = True
                    yield chunk
        except OracleParseError as exc:
            logger.warning(
                "result_stream_failed",
                operation=call.resolved_operation,
                error=str(exc),
                partial=produced,
            )
        if not produced:
            yield fallback_rendering(raw_result, call.resolved_operation)

    async def persist_raw(self, state: RunState, step: Step, call: ResolvedCall, raw_result: Any) -> None:
        await self._record_step(state, step.index, True, {"operation": call.resolved_operation, "result": raw_result})
        content = raw_result if isinstance(raw_result, str) else json.dumps(raw_result, ensure_ascii=False, default=str)
        await self._append_message(
            state,
            content,
            {"step": step.index, "capability": call.capability, "operation": call.resolved_operation, "kind": "raw"},
        )

    async def persist_formatted(
        self,
        state: RunState,
        step: Step,
        call: ResolvedCall,
        raw_result: Any,
        formatted: str,
    ) -> dict[str, Any]:
        """Store the formatted artifact; return the scratchpad entries to apply."""
        await self._append_message(
            state,
            formatted,
            {"step": step.index, "capability": call.capability, "operation": call.resolved_operation, "kind": "formatted"},
        )
        return {
            step_result_key(step.index): raw_result,
            LAST_RESULT_KEY: raw_result,
            step_formatted_key(step.index): formatted,
        }

    async def persist_failure(self, state: RunState, record: ExecutionRecord) -> None:
        await self._record_step(
            state,
            record.step_index,
            False,
            {"operation": record.operation, "error": record.error, "attempts": record.attempts},
        )
        await self._append_message(
            state,
            f"Step {record.step_index} ({record.capability}.{record.operation}) failed: {record.error}",
            {"step": record.step_index, "capability": record.capability, "operation": record.operation, "kind": "error"},
        )

    def _format_context(self, state: RunState, call: ResolvedCall, raw_result: Any) -> dict[str, Any]:
        serialized = raw_result if isinstance(raw_result, str) else json.dumps(raw_result, default=str)
        context: dict[str, Any] = {
            "objective": state.objective,
            "capability": call.capability,
            "operation": call.resolved_operation,
            "args": call.args,
        }
        if len(serialized) > self._long_result_chars:
            context["filter"] = "Result is large: keep only the fields most relevant to the objective."
        return context

    async def _record_step(self, state: RunState, index: int, success: bool, payload: dict[str, Any]) -> None:
        if self._task_store is None:
            return
        try:
            await self._task_store.record_step_result(state.task_id, index, success, payload)
        except Exception:
            logger.exception("step_result_persist_failed", task_id=state.task_id, step=index)

    async def _append_message(self, state: RunState, content: str, metadata: dict[str, Any]) -> None:
        if self._message_sink is None or state.conversation_ref is None:
            return
        try:
            await self._message_sink.append_message(
                conversation_ref=state.conversation_ref,
                content=content,
                metadata={"task_id": state.task_id, **metadata},
            )
        except Exception:
            logger.exception("step_message_persist_failed", task_id=state.task_id, step=metadata.get("step"))


__all__ = ["ResultPipeline", "fallback_rendering"]
