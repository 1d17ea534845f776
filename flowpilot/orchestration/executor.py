from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_incrementing

from ..core import metrics
from ..core.logging import get_logger
from ..tools.exceptions import InvocationFailed, ToolError, ToolTimeoutError
from .enums import StepStatus
from .errors import OracleParseError
from .state import ExecutionOutcome, ResolvedCall, Step

logger = get_logger(name=__name__)

SleepFn = Callable[[float], Awaitable[None]]


class StepExecutor:
    """Runs one resolved call with bounded, linearly spaced retries.

    A step gets ``step.max_attempts`` retries after its first try, waiting
    ``base_delay * n`` seconds after the n-th failed attempt. Only ``ToolError``
    is retried; anything else propagates to the caller untouched.
    """

    def __init__(
        self,
        tools: Any,
        oracle: Any,
        *,
        base_delay: float = 1.0,
        timeout_seconds: float = 30.0,
        sleep: SleepFn | None = None,
    ) -> None:
        self._tools = tools
        self._oracle = oracle
        self._base_delay = base_delay
        self._timeout = timeout_seconds
        self._sleep = sleep or asyncio.sleep

    async def execute(self, step: Step, call: ResolvedCall, *, principal: str | None = None) -> ExecutionOutcome:
        step.status = StepStatus.EXECUTING
        retrying = AsyncRetrying(
            stop=stop_after_attempt(step.max_attempts + 1),
            wait=wait_incrementing(start=self._base_delay, increment=self._base_delay),
            retry=retry_if_exception_type(ToolError),
            before_sleep=lambda state: self._log_retry(step, call, state),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    step.attempts = attempt.retry_state.attempt_number
                    result = await self._attempt(call, principal)
        except ToolError as exc:
            message = str(exc) or type(exc).__name__
            logger.warning(
                "step_execution_exhausted",
                step=step.index,
                capability=call.capability,
                operation=call.resolved_operation,
                attempts=step.attempts,
                error=message,
            )
            return ExecutionOutcome(success=False, error=message, attempts=step.attempts)

        logger.info(
            "step_execution_succeeded",
            step=step.index,
            capability=call.capability,
            operation=call.resolved_operation,
            attempts=step.attempts,
        )
        return ExecutionOutcome(success=True, result=result, attempts=step.attempts)

    async def _attempt(self, call: ResolvedCall, principal: str | None) -> Any:
        if call.is_language_model_operation:
            pending = self._oracle.generate(call.resolved_operation, call.args)
        else:
            pending = self._tools.invoke(call.capability, call.resolved_operation, call.args, principal)

        outcome = "error"
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(pending, timeout=self._timeout)
            outcome = "success"
            return result
        except asyncio.TimeoutError as exc:
            outcome = "timeout"
            raise ToolTimeoutError(
                f"{call.capability}.{call.resolved_operation} timed out after {self._timeout}s"
            ) from exc
        except OracleParseError as exc:
            outcome = "failure"
            raise InvocationFailed(str(exc)) from exc
        except ToolError:
            outcome = "failure"
            raise
        finally:
            metrics.observe_tool_invocation(
                capability=call.capability,
                outcome=outcome,
                latency=time.perf_counter() - start,
            )

    @staticmethod
    def _log_retry(step: Step, call: ResolvedCall, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome is not None else None
        logger.info(
            "step_execution_retry",
            step=step.index,
            capability=call.capability,
            operation=call.resolved_operation,
            attempt=state.attempt_number,
            max_attempts=step.max_attempts + 1,
            retry_in=state.next_action.sleep if state.next_action is not None else None,
            error=str(error) if error else None,
        )


__all__ = ["StepExecutor"]
