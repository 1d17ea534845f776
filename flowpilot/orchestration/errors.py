from __future__ import annotations


class OrchestrationError(RuntimeError):
    """Base class for engine-level failures."""


class PlanMissing(OrchestrationError):
    """Raised when a task has no steps to run."""


class ResolutionError(OrchestrationError):
    """Raised when no operation can be matched for a step at all."""


class OracleParseError(OrchestrationError):
    """Raised when an oracle reply cannot be parsed into its contract.

    Every call site catches this and applies a deterministic fallback.
    """


class ReplanFailed(OrchestrationError):
    """Raised when the planner could not produce a usable replacement suffix."""


class CancelledByCaller(OrchestrationError):
    """Raised when the caller cancels a run between steps."""


__all__ = [
    "CancelledByCaller",
    "OracleParseError",
    "OrchestrationError",
    "PlanMissing",
    "ReplanFailed",
    "ResolutionError",
]
