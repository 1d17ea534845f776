from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator

from .enums import StepStatus

if TYPE_CHECKING:
    from .complexity import ComplexityAnalysis

LAST_RESULT_KEY = "lastResult"


def is_language_model_capability(capability: str) -> bool:
    return "llm" in capability.strip().lower()


def step_result_key(index: int) -> str:
    return f"step_{index}_result"


def step_formatted_key(index: int) -> str:
    return f"step_{index}_formatted"


@dataclass(slots=True)
class Step:
    index: int
    capability: str
    operation: str
    nominal_input: Any = None
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    reasoning: str = ""

    @property
    def is_language_model_operation(self) -> bool:
        return is_language_model_capability(self.capability)

    def describe(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "capability": self.capability,
            "operation": self.operation,
            "input": self.nominal_input,
            "status": self.status.value,
            "attempts": self.attempts,
        }


@dataclass(slots=True)
class Plan:
    """Index-addressed step list whose suffix may be replaced while a run is in flight."""

    steps: list[Step] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def step(self, index: int) -> Step:
        if index < 1 or index > len(self.steps):
            raise IndexError(f"step {index} is outside plan of {len(self.steps)} steps")
        return self.steps[index - 1]

    def remaining_after(self, index: int) -> int:
        return max(0, len(self.steps) - index)

    def replace_suffix(self, after_index: int, new_steps: list[Step]) -> list[Step]:
        """Drop every step after ``after_index`` and append ``new_steps``.

        The kept prefix is untouched. Appended steps are renumbered from
        ``after_index + 1`` and reset to pending with no attempts.
        """
        if after_index < 0 or after_index > len(self.steps):
            raise IndexError(f"cannot splice after step {after_index}")
        prefix = self.steps[:after_index]
        for offset, step in enumerate(new_steps, start=1):
            step.index = after_index + offset
            step.status = StepStatus.PENDING
            step.attempts = 0
        self.steps = prefix + list(new_steps)
        return list(new_steps)


@dataclass(slots=True, frozen=True)
class ExecutionRecord:
    step_index: int
    capability: str
    operation: str
    success: bool
    result: Any = None
    error: str | None = None
    attempts: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(slots=True)
class ResolvedCall:
    capability: str
    resolved_operation: str
    args: dict[str, Any] = field(default_factory=dict)
    is_language_model_operation: bool = False


@dataclass(slots=True)
class ExecutionOutcome:
    success: bool
    result: Any = None
    error: str | None = None
    attempts: int = 0


@dataclass(slots=True)
class RunState:
    task_id: str
    objective: str
    plan: Plan
    principal: str | None = None
    conversation_ref: str | None = None
    scratchpad: dict[str, Any] = field(default_factory=dict)
    records: list[ExecutionRecord] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    current_index: int = 0
    done: bool = False
    replans: int = 0
    complexity: ComplexityAnalysis | None = None

    @property
    def total(self) -> int:
        return len(self.plan)

    @property
    def last_result(self) -> Any:
        return self.scratchpad.get(LAST_RESULT_KEY)

    @property
    def has_last_result(self) -> bool:
        return self.scratchpad.get(LAST_RESULT_KEY) is not None

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def advance_to(self, index: int) -> None:
        if index < self.current_index:
            raise ValueError(f"current index cannot move backwards ({self.current_index} -> {index})")
        self.current_index = index

    def append_record(self, record: ExecutionRecord) -> None:
        if self.records and record.step_index <= self.records[-1].step_index:
            raise ValueError(f"record for step {record.step_index} is out of order")
        self.records.append(record)

    def recent_records(self, count: int) -> list[ExecutionRecord]:
        if count <= 0:
            return []
        return self.records[-count:]

    def record_history(self) -> list[dict[str, Any]]:
        return [record.to_payload() for record in self.records]


__all__ = [
    "ExecutionOutcome",
    "ExecutionRecord",
    "LAST_RESULT_KEY",
    "Plan",
    "ResolvedCall",
    "RunState",
    "Step",
    "is_language_model_capability",
    "step_formatted_key",
    "step_result_key",
]
