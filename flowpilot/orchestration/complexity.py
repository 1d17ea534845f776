"""Deterministic task-complexity classification used to tune observation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .enums import ObservationMode, TaskComplexity

_SIMPLE_PATTERNS = (
    re.compile(r"^(show me|get|fetch|what is|current|latest)\s"),
    re.compile(r"^(how much|how many|price of|value of)\s"),
    re.compile(r"^(status of|info about|details of)\s"),
    re.compile(r"\b(index|price|value|status|information)\s*(of|for)?\s*\w+$"),
    re.compile(r"^(get current|show current|fetch latest)\s"),
)

_MEDIUM_PATTERNS = (
    re.compile(r"\b(compare|analyze|calculate|process)\b"),
    re.compile(r"\b(then|after|next|followed by)\b"),
    re.compile(r"\b(both|all|multiple|several)\b"),
    re.compile(r"\band\s+\w+\s+(also|too|as well)"),
    re.compile(r"\b(summary|report|overview)\b"),
)

_COMPLEX_PATTERNS = (
    re.compile(r"\b(workflow|pipeline|process.*step)\b"),
    re.compile(r"\b(first.*then.*finally|step.*step.*step)\b"),
    re.compile(r"\b(comprehensive|detailed|thorough)\s+(analysis|report|study)\b"),
    re.compile(r"\b(multiple.*and.*then)\b"),
    re.compile(r"\b(optimize|automate|integrate)\b"),
)

_LONG_OBJECTIVE_CHARS = 100


@dataclass(slots=True, frozen=True)
class ComplexityAnalysis:
    complexity: TaskComplexity
    observation: ObservationMode
    reasoning: str

    def to_payload(self) -> dict[str, str]:
        return {
            "complexity": self.complexity.value,
            "observation": self.observation.value,
            "reasoning": self.reasoning,
        }


def analyze_task_complexity(objective: str, step_count: int) -> ComplexityAnalysis:
    """Classify an objective by wording and plan length.

    Checks run from simplest to most complex; the first match wins and an
    unmatched objective is treated as a medium task.
    """
    query = objective.lower().strip()

    if step_count <= 2 or any(pattern.search(query) for pattern in _SIMPLE_PATTERNS):
        return ComplexityAnalysis(
            TaskComplexity.SIMPLE_QUERY,
            ObservationMode.FAST,
            "Direct data query; complete quickly after the first success",
        )

    if 3 <= step_count <= 5 or any(pattern.search(query) for pattern in _MEDIUM_PATTERNS):
        return ComplexityAnalysis(
            TaskComplexity.MEDIUM_TASK,
            ObservationMode.BALANCED,
            "Multi-step task requiring balanced observation",
        )

    if (
        step_count > 5
        or len(query) > _LONG_OBJECTIVE_CHARS
        or any(pattern.search(query) for pattern in _COMPLEX_PATTERNS)
    ):
        return ComplexityAnalysis(
            TaskComplexity.COMPLEX_WORKFLOW,
            ObservationMode.THOROUGH,
            "Complex multi-step workflow requiring thorough observation",
        )

    return ComplexityAnalysis(
        TaskComplexity.MEDIUM_TASK,
        ObservationMode.BALANCED,
        "No decisive signal; defaulting to balanced observation",
    )


__all__ = ["ComplexityAnalysis", "analyze_task_complexity"]
