from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from flowpilot.core.metrics import (
    increment_auto_publish,
    increment_oracle_parse_failure,
    mark_run_completed,
    mark_run_started,
    record_step_outcome,
)


def test_run_lifecycle_tracks_active_gauge_and_status():
    active_before = REGISTRY.get_sample_value("flowpilot_runs_active", {"strategy": "adaptive"}) or 0.0
    completed_labels = {"strategy": "adaptive", "status": "completed"}
    completed_before = REGISTRY.get_sample_value("flowpilot_runs_total", completed_labels) or 0.0

    mark_run_started(strategy="adaptive")
    assert REGISTRY.get_sample_value("flowpilot_runs_active", {"strategy": "adaptive"}) == pytest.approx(
        active_before + 1
    )
    mark_run_completed(strategy="adaptive", status="completed", latency=2.5)

    assert REGISTRY.get_sample_value("flowpilot_runs_active", {"strategy": "adaptive"}) == pytest.approx(active_before)
    assert REGISTRY.get_sample_value("flowpilot_runs_total", completed_labels) == pytest.approx(completed_before + 1)


def test_step_outcome_records_attempts():
    labels = {"capability": "metrics-test"}
    before = REGISTRY.get_sample_value("flowpilot_step_attempts_sum", labels) or 0.0

    record_step_outcome(capability="metrics-test", status="failed", attempts=4)

    assert REGISTRY.get_sample_value("flowpilot_step_attempts_sum", labels) == pytest.approx(before + 4)
    assert REGISTRY.get_sample_value(
        "flowpilot_step_outcomes_total", {"capability": "metrics-test", "status": "failed"}
    ) >= 1.0


def test_counters_increment_by_label():
    publish_labels = {"capability": "x-mcp", "outcome": "published"}
    parse_labels = {"purpose": "metrics_test"}
    publish_before = REGISTRY.get_sample_value("flowpilot_auto_publish_total", publish_labels) or 0.0
    parse_before = REGISTRY.get_sample_value("flowpilot_oracle_parse_failures_total", parse_labels) or 0.0

    increment_auto_publish(capability="x-mcp", outcome="published")
    increment_oracle_parse_failure(purpose="metrics_test")

    assert REGISTRY.get_sample_value("flowpilot_auto_publish_total", publish_labels) == pytest.approx(publish_before + 1)
    assert REGISTRY.get_sample_value("flowpilot_oracle_parse_failures_total", parse_labels) == pytest.approx(
        parse_before + 1
    )
