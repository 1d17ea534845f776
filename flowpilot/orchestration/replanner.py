"""Adaptive replanning when step failures cluster."""

from __future__ import annotations

from typing import Any, Sequence

from ..core import metrics
from ..core.logging import get_logger
from .errors import OracleParseError, ReplanFailed
from .resolver import preview
from .state import RunState, Step

logger = get_logger(name=__name__)


class ReplanPolicy:
    """Limits governing when a run may adapt its remaining plan."""

    def __init__(
        self,
        *,
        max_replans: int = 3,
        failure_window: int = 2,
        min_remaining_steps: int = 2,
    ) -> None:
        self.max_replans = max_replans
        self.failure_window = failure_window
        self.min_remaining_steps = min_remaining_steps


class Replanner:
    """Asks the planner for a replacement suffix; the orchestrator applies it."""

    def __init__(
        self,
        oracle: Any,
        *,
        policy: ReplanPolicy | None = None,
        max_attempts: int = 3,
        preview_chars: int = 500,
    ) -> None:
        self._oracle = oracle
        self.policy = policy or ReplanPolicy()
        self._max_attempts = max_attempts
        self._preview_chars = preview_chars

    def should_replan(self, state: RunState, index: int) -> bool:
        if state.replans >= self.policy.max_replans:
            logger.debug("replan_limit_reached", count=state.replans)
            return False
        if state.plan.remaining_after(index) < self.policy.min_remaining_steps:
            return False
        window = state.recent_records(self.policy.failure_window)
        return len(window) == self.policy.failure_window and all(not record.success for record in window)

    async def replan(self, state: RunState, index: int, capabilities: Sequence[str]) -> list[Step]:
        """Return fresh steps meant to replace everything after ``index``.

        Raises ``ReplanFailed`` when the planner reply is unusable or empty.
        """
        context = {
            "original_objective": state.objective,
            "current_context": {
                "current_step": index,
                "total_steps": state.total,
                "completed": state.completed,
                "failed": state.failed,
                "history": [
                    {**record.to_payload(), "result": preview(record.result, self._preview_chars)}
                    for record in state.records
                ],
                "remaining_plan": [step.describe() for step in state.plan.steps[index:]],
            },
            "available_capabilities": list(capabilities),
        }
        try:
            proposals = await self._oracle.plan(context)
        except OracleParseError as exc:
            metrics.increment_replan(outcome="failed")
            logger.warning("replan_parse_failed", step=index, error=str(exc))
            raise ReplanFailed(f"planner reply unusable: {exc}") from exc

        if not proposals:
            metrics.increment_replan(outcome="empty")
            raise ReplanFailed("planner proposed no steps")

        steps = [
            Step(
                index=0,
                capability=proposal.capability,
                operation=proposal.operation,
                nominal_input=proposal.input,
                max_attempts=self._max_attempts,
                reasoning=proposal.reasoning,
            )
            for proposal in proposals
        ]
        metrics.increment_replan(outcome="adapted")
        logger.info("replan_proposed", step=index, new_steps=len(steps))
        return steps


__all__ = ["ReplanPolicy", "Replanner"]
