"""
Orchestration Package

The engine that runs a task's plan step by step:
- Parameter resolution against advertised operation schemas
- Step execution with bounded retries
- Adaptive replanning and early-completion observation
- Result formatting, streaming and create-then-publish chaining
"""

from .enums import ExecutionStrategy, StepStatus, TaskStatus
from .errors import (
    CancelledByCaller,
    OracleParseError,
    OrchestrationError,
    PlanMissing,
    ReplanFailed,
    ResolutionError,
)
from .events import EngineEvent, EventType
from .orchestrator import Orchestrator, build_final_summary
from .state import ExecutionOutcome, ExecutionRecord, Plan, ResolvedCall, RunState, Step

__all__ = [
    # Engine
    "Orchestrator",
    "ExecutionStrategy",
    "build_final_summary",
    # State
    "ExecutionOutcome",
    "ExecutionRecord",
    "Plan",
    "ResolvedCall",
    "RunState",
    "Step",
    "StepStatus",
    "TaskStatus",
    # Events
    "EngineEvent",
    "EventType",
    # Errors
    "CancelledByCaller",
    "OracleParseError",
    "OrchestrationError",
    "PlanMissing",
    "ReplanFailed",
    "ResolutionError",
]
