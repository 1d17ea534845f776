from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RUNS_TOTAL = Counter(
    "flowpilot_runs_total",
    "Orchestration runs grouped by strategy and final status",
    labelnames=("strategy", "status"),
)

RUN_LATENCY_SECONDS = Histogram(
    "flowpilot_run_latency_seconds",
    "End-to-end orchestration run latency",
    labelnames=("strategy",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

RUNS_ACTIVE = Gauge(
    "flowpilot_runs_active",
    "Orchestration runs currently in flight",
    labelnames=("strategy",),
)

STEP_OUTCOMES_TOTAL = Counter(
    "flowpilot_step_outcomes_total",
    "Terminal step outcomes grouped by capability and status",
    labelnames=("capability", "status"),
)

STEP_ATTEMPTS = Histogram(
    "flowpilot_step_attempts",
    "Number of attempts a step needed before reaching a terminal status",
    labelnames=("capability",),
    buckets=(0, 1, 2, 3, 4, 5, 8),
)

TOOL_INVOCATION_LATENCY_SECONDS = Histogram(
    "flowpilot_tool_invocation_latency_seconds",
    "Latency of individual tool invocation attempts",
    labelnames=("capability", "outcome"),
)

REPLANS_TOTAL = Counter(
    "flowpilot_replans_total",
    "Adaptive replanning attempts grouped by outcome",
    labelnames=("outcome",),
)

OBSERVATIONS_TOTAL = Counter(
    "flowpilot_observations_total",
    "Objective-satisfaction observations grouped by decision",
    labelnames=("decision",),
)

AUTO_PUBLISH_TOTAL = Counter(
    "flowpilot_auto_publish_total",
    "Create-then-publish chaining outcomes",
    labelnames=("capability", "outcome"),
)

ORACLE_PARSE_FAILURES_TOTAL = Counter(
    "flowpilot_oracle_parse_failures_total",
    "Oracle replies that could not be parsed and fell back to a deterministic default",
    labelnames=("purpose",),
)


def mark_run_started(*, strategy: str) -> None:
    RUNS_ACTIVE.labels(strategy=strategy).inc()
    RUNS_TOTAL.labels(strategy=strategy, status="started").inc()


def mark_run_completed(*, strategy: str, status: str, latency: float) -> None:
    RUNS_ACTIVE.labels(strategy=strategy).dec()
    RUNS_TOTAL.labels(strategy=strategy, status=status).inc()
    RUN_LATENCY_SECONDS.labels(strategy=strategy).observe(max(0.0, latency))


def record_step_outcome(*, capability: str, status: str, attempts: int) -> None:
    STEP_OUTCOMES_TOTAL.labels(capability=capability, status=status).inc()
    STEP_ATTEMPTS.labels(capability=capability).observe(max(0, attempts))


def observe_tool_invocation(*, capability: str, outcome: str, latency: float) -> None:
    TOOL_INVOCATION_LATENCY_SECONDS.labels(capability=capability, outcome=outcome).observe(max(0.0, latency))


def increment_replan(*, outcome: str) -> None:
    REPLANS_TOTAL.labels(outcome=outcome).inc()


def increment_observation(*, decision: str) -> None:
    OBSERVATIONS_TOTAL.labels(decision=decision).inc()


def increment_auto_publish(*, capability: str, outcome: str) -> None:
    AUTO_PUBLISH_TOTAL.labels(capability=capability, outcome=outcome).inc()


def increment_oracle_parse_failure(*, purpose: str) -> None:
    ORACLE_PARSE_FAILURES_TOTAL.labels(purpose=purpose).inc()


__all__ = [
    "increment_auto_publish",
    "increment_observation",
    "increment_oracle_parse_failure",
    "increment_replan",
    "mark_run_completed",
    "mark_run_started",
    "observe_tool_invocation",
    "record_step_outcome",
]
