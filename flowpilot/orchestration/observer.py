from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..core import metrics
from ..core.logging import get_logger
from .enums import OraclePurpose
from .errors import OracleParseError
from .resolver import preview
from .state import RunState

logger = get_logger(name=__name__)


@dataclass(slots=True, frozen=True)
class Observation:
    should_continue: bool
    reasoning: str = ""


class Observer:
    """Asks whether the objective is already satisfied after a successful step.

    An unusable reply always means "keep going".
    """

    def __init__(self, oracle: Any, *, preview_chars: int = 500) -> None:
        self._oracle = oracle
        self._preview_chars = preview_chars

    async def observe(self, state: RunState, index: int) -> Observation:
        context = {
            "original_objective": state.objective,
            "current_step": index,
            "total_steps": state.total,
            "complexity": state.complexity.to_payload() if state.complexity else None,
            "history": [
                {**record.to_payload(), "result": preview(record.result, self._preview_chars)}
                for record in state.records
            ],
        }
        try:
            verdict = await self._oracle.classify(context, purpose=OraclePurpose.OBSERVATION)
        except OracleParseError as exc:
            metrics.increment_observation(decision="fallback_continue")
            logger.warning("observation_parse_failed", step=index, error=str(exc))
            return Observation(should_continue=True, reasoning="observation unavailable")

        decision = "continue" if verdict.decision else "complete"
        metrics.increment_observation(decision=decision)
        logger.info("observation_decided", step=index, decision=decision, reasoning=verdict.reasoning)
        return Observation(should_continue=verdict.decision, reasoning=verdict.reasoning)


__all__ = ["Observation", "Observer"]
