from __future__ import annotations

from enum import Enum


class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStrategy(str, Enum):
    ADAPTIVE = "adaptive"
    SEQUENTIAL = "sequential"


class TaskStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskComplexity(str, Enum):
    SIMPLE_QUERY = "simple_query"
    MEDIUM_TASK = "medium_task"
    COMPLEX_WORKFLOW = "complex_workflow"


class ObservationMode(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"


class OraclePurpose(str, Enum):
    """Call sites that consult the oracle; used to label logs and metrics."""

    REINFERENCE_GATE = "reinference_gate"
    CONTEXT_INFERENCE = "context_inference"
    OPERATION_RESOLUTION = "operation_resolution"
    PARAMETER_TRANSFORM = "parameter_transform"
    CONTENT_REWRITE = "content_rewrite"
    OBSERVATION = "observation"
    REPLANNING = "replanning"
    FORMATTING = "formatting"


__all__ = [
    "ExecutionStrategy",
    "ObservationMode",
    "OraclePurpose",
    "StepStatus",
    "TaskComplexity",
    "TaskStatus",
]
