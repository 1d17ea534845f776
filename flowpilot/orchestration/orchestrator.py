"""Single-task control loop driving resolution, execution and adaptation.

The orchestrator exclusively owns a ``RunState`` for the lifetime of a run.
Collaborators receive read access and hand back values that are applied
here, so every mutation of the plan, the record log and the scratchpad
happens in this module and in execution order.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Sequence

from pydantic import ValidationError

from ..core import metrics
from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from .auto_publish import AutoPublisher
from .complexity import analyze_task_complexity
from .contracts import PlannedStepPayload
from .enums import ExecutionStrategy, StepStatus
from .errors import CancelledByCaller, PlanMissing, ReplanFailed, ResolutionError
from .events import EngineEvent, EventType, make_event
from .executor import SleepFn, StepExecutor
from .observer import Observer
from .replanner import ReplanPolicy, Replanner
from .resolver import ParameterResolver
from .result_pipeline import ResultPipeline
from .state import ExecutionOutcome, ExecutionRecord, Plan, ResolvedCall, RunState, Step

if TYPE_CHECKING:
    from ..services.messages import MessageSink
    from ..services.oracle import Oracle
    from ..services.task_store import TaskStore
    from ..services.tools import ToolAdapter

logger = get_logger(name=__name__)


def build_final_summary(state: RunState) -> str:
    executed = len(state.records)
    rate = (state.completed / executed * 100) if executed else 0.0
    lines = [
        "## Workflow Execution Summary",
        "",
        f"**Objective:** {state.objective}",
        f"**Success rate:** {rate:.0f}% ({state.completed}/{executed} executed steps)",
        f"- Completed: {state.completed}",
        f"- Failed: {state.failed}",
        f"- Planned: {state.total}",
    ]
    if state.replans:
        lines.append(f"- Plan adaptations: {state.replans}")
    skipped = state.total - executed
    if skipped > 0:
        lines.append(f"- Not executed: {skipped}")

    successes = [record for record in state.records if record.success]
    failures = [record for record in state.records if not record.success]
    if successes:
        lines.extend(["", "### Successful steps"])
        lines.extend(f"- Step {record.step_index}: {record.capability}.{record.operation}" for record in successes)
    if failures:
        lines.extend(["", "### Failed steps"])
        lines.extend(
            f"- Step {record.step_index}: {record.capability}.{record.operation}: {record.error}" for record in failures
        )
    return "\n".join(lines)


class Orchestrator:
    def __init__(
        self,
        *,
        tools: ToolAdapter,
        oracle: Oracle,
        strategy: ExecutionStrategy | str | None = None,
        settings: Settings | None = None,
        task_store: TaskStore | None = None,
        message_sink: MessageSink | None = None,
        capabilities: Sequence[str] | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        engine = self._settings.engine
        self.strategy = ExecutionStrategy(strategy or engine.strategy)
        self._capabilities = list(capabilities) if capabilities is not None else None
        self._max_attempts = engine.max_attempts
        self._stream_terminal = self._settings.formatting.stream_terminal_step

        self._resolver = ParameterResolver(
            oracle,
            tools,
            rules=self._settings.chaining.rules,
            aliases=self._settings.tools.aliases,
            content_max_length=self._settings.chaining.content_max_length,
            history_tail=engine.history_tail,
            preview_chars=engine.result_preview_chars,
        )
        self._executor = StepExecutor(
            tools,
            oracle,
            base_delay=engine.retry_base_delay_seconds,
            timeout_seconds=engine.invocation_timeout_seconds,
            sleep=sleep,
        )
        self._replanner = Replanner(
            oracle,
            policy=ReplanPolicy(
                max_replans=engine.max_replans,
                failure_window=engine.replan_failure_window,
                min_remaining_steps=engine.replan_min_remaining_steps,
            ),
            max_attempts=engine.max_attempts,
            preview_chars=engine.result_preview_chars,
        )
        self._observer = Observer(oracle, preview_chars=engine.result_preview_chars)
        self._pipeline = ResultPipeline(
            oracle,
            publisher=AutoPublisher(
                tools,
                self._settings.chaining.rules,
                aliases=self._settings.tools.aliases,
                enabled=self._settings.chaining.enabled,
                timeout_seconds=engine.invocation_timeout_seconds,
            ),
            task_store=task_store,
            message_sink=message_sink,
            long_result_chars=self._settings.formatting.long_result_chars,
        )

    @property
    def adaptive(self) -> bool:
        return self.strategy is ExecutionStrategy.ADAPTIVE

    def prepare(
        self,
        task_id: str,
        objective: str,
        plan: Sequence[PlannedStepPayload | Mapping[str, Any]],
        *,
        principal: str | None = None,
        conversation_ref: str | None = None,
    ) -> RunState:
        """Build the run state for a task; raises ``PlanMissing`` when there is nothing to run."""
        if not plan:
            raise PlanMissing(f"task '{task_id}' has no steps to run")
        steps: list[Step] = []
        for position, raw in enumerate(plan, start=1):
            try:
                payload = raw if isinstance(raw, PlannedStepPayload) else PlannedStepPayload.model_validate(raw)
            except ValidationError as exc:
                raise PlanMissing(f"task '{task_id}' step {position} is malformed") from exc
            steps.append(
                Step(
                    index=position,
                    capability=payload.capability,
                    operation=payload.operation,
                    nominal_input=payload.input,
                    max_attempts=self._max_attempts,
                    reasoning=payload.reasoning,
                )
            )
        return RunState(
            task_id=task_id,
            objective=objective,
            plan=Plan(steps),
            principal=principal,
            conversation_ref=conversation_ref,
            complexity=analyze_task_complexity(objective, len(steps)),
        )

    async def execute(self, state: RunState, *, cancel_event: asyncio.Event | None = None) -> AsyncIterator[EngineEvent]:
        """Run every remaining step of ``state`` and yield lifecycle events in execution order."""
        started = time.perf_counter()
        metrics.mark_run_started(strategy=self.strategy.value)
        status = "aborted"
        log = logger.bind(task_id=state.task_id, strategy=self.strategy.value)
        try:
            yield make_event(
                EventType.EXECUTION_START,
                task_id=state.task_id,
                strategy=self.strategy.value,
                total_steps=state.total,
                complexity=state.complexity.to_payload() if state.complexity else None,
                capabilities=self._available_capabilities(state),
            )
            log.info("execution_started", total_steps=state.total)

            index = state.records[-1].step_index + 1 if state.records else 1
            while index <= state.total and not state.done:
                if cancel_event is not None and cancel_event.is_set():
                    raise CancelledByCaller(f"task '{state.task_id}' cancelled before step {index}")

                state.advance_to(index)
                step = state.plan.step(index)
                yield make_event(
                    EventType.STEP_BEGIN,
                    step=index,
                    capability=step.capability,
                    operation=step.operation,
                    input=step.nominal_input,
                    total_steps=state.total,
                )
                async for event in self._run_step(state, step):
                    yield event

                if state.records[-1].success:
                    if self.adaptive and index < state.total:
                        observation = await self._observer.observe(state, index)
                        if not observation.should_continue:
                            state.done = True
                            log.info("execution_completed_early", step=index, reasoning=observation.reasoning)
                            yield make_event(
                                EventType.TASK_OBSERVATION_COMPLETE,
                                step=index,
                                reasoning=observation.reasoning or "Objective satisfied",
                                skipped_steps=state.total - index,
                            )
                            break
                elif self.adaptive and self._replanner.should_replan(state, index):
                    adapted = await self._adapt(state, index)
                    if adapted is not None:
                        yield adapted
                index += 1

            state.done = True
            success = state.succeeded
            status = "completed" if success else "failed"
            yield make_event(EventType.GENERATING_SUMMARY, message="Generating execution summary")
            summary = build_final_summary(state)
            yield make_event(
                EventType.WORKFLOW_COMPLETE,
                success=success,
                completed=state.completed,
                failed=state.failed,
                total=state.total,
                executed=len(state.records),
                replans=state.replans,
            )
            yield make_event(EventType.TASK_COMPLETE, task_id=state.task_id, success=success, status=status)
            yield make_event(
                EventType.FINAL_RESULT,
                task_id=state.task_id,
                success=success,
                reached_terminal_state=True,
                summary=summary,
                completed=state.completed,
                failed=state.failed,
                total=state.total,
                records=state.record_history(),
            )
            log.info("execution_finished", success=success, completed=state.completed, failed=state.failed)
        except CancelledByCaller as exc:
            status = "cancelled"
            log.info("execution_cancelled", step=state.current_index, reason=str(exc))
            yield make_event(
                EventType.TASK_CANCELLED,
                task_id=state.task_id,
                step=state.current_index,
                reason=str(exc),
                completed=state.completed,
                failed=state.failed,
            )
        except Exception as exc:
            log.exception("execution_aborted", step=state.current_index, error=str(exc))
            yield make_event(
                EventType.ERROR,
                task_id=state.task_id,
                step=state.current_index,
                message=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            metrics.mark_run_completed(
                strategy=self.strategy.value,
                status=status,
                latency=time.perf_counter() - started,
            )

    async def _run_step(self, state: RunState, step: Step) -> AsyncIterator[EngineEvent]:
        call: ResolvedCall | None = None
        try:
            call = await self._resolver.resolve(step, state, use_gate=self.adaptive)
        except ResolutionError as exc:
            logger.warning("step_resolution_failed", step=step.index, error=str(exc))
            outcome = ExecutionOutcome(success=False, error=str(exc), attempts=0)
        else:
            outcome = await self._executor.execute(step, call, principal=state.principal)

        operation = call.resolved_operation if call is not None else step.operation
        if not outcome.success or call is None:
            record = ExecutionRecord(
                step_index=step.index,
                capability=step.capability,
                operation=operation,
                success=False,
                error=outcome.error,
                attempts=outcome.attempts,
            )
            state.append_record(record)
            step.status = StepStatus.FAILED
            state.failed += 1
            metrics.record_step_outcome(capability=step.capability, status="failed", attempts=outcome.attempts)
            await self._pipeline.persist_failure(state, record)
            yield make_event(
                EventType.STEP_ERROR,
                step=step.index,
                capability=step.capability,
                operation=operation,
                error=outcome.error,
                attempts=outcome.attempts,
            )
            return

        result = await self._pipeline.auto_chain(call, outcome.result, principal=state.principal)
        state.append_record(
            ExecutionRecord(
                step_index=step.index,
                capability=step.capability,
                operation=operation,
                success=True,
                result=result,
                attempts=outcome.attempts,
            )
        )
        step.status = StepStatus.COMPLETED
        state.completed += 1
        metrics.record_step_outcome(capability=step.capability, status="completed", attempts=outcome.attempts)

        await self._pipeline.persist_raw(state, step, call, result)
        yield make_event(
            EventType.STEP_RAW_RESULT,
            step=step.index,
            capability=step.capability,
            operation=operation,
            result=result,
        )

        if self._stream_terminal and step.index == state.total:
            chunks: list[str] = []
            async for chunk in self._pipeline.stream(state, call, result):
                chunks.append(chunk)
                yield make_event(EventType.SUMMARY_CHUNK, step=step.index, content=chunk)
            formatted = "".join(chunks)
        else:
            formatted = await self._pipeline.render(state, call, result)

        state.scratchpad.update(await self._pipeline.persist_formatted(state, step, call, result, formatted))
        yield make_event(
            EventType.STEP_COMPLETE,
            step=step.index,
            capability=step.capability,
            operation=operation,
            success=True,
            attempts=outcome.attempts,
            result=result,
            formatted=formatted,
        )

    async def _adapt(self, state: RunState, index: int) -> EngineEvent | None:
        try:
            new_steps = await self._replanner.replan(state, index, self._available_capabilities(state))
        except ReplanFailed as exc:
            logger.warning("workflow_adaptation_skipped", task_id=state.task_id, step=index, error=str(exc))
            return None
        previous_total = state.total
        state.plan.replace_suffix(index, new_steps)
        state.replans += 1
        logger.info(
            "workflow_adapted",
            task_id=state.task_id,
            step=index,
            previous_total=previous_total,
            total=state.total,
        )
        return make_event(
            EventType.WORKFLOW_ADAPTED,
            after_step=index,
            new_steps=len(new_steps),
            previous_total=previous_total,
            total=state.total,
            steps=[step.describe() for step in new_steps],
        )

    def _available_capabilities(self, state: RunState) -> list[str]:
        if self._capabilities is not None:
            return list(self._capabilities)
        seen: dict[str, None] = {}
        for step in state.plan:
            seen.setdefault(step.capability, None)
        return list(seen)


__all__ = ["Orchestrator", "build_final_summary"]
