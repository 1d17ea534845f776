from flowpilot.orchestration.complexity import analyze_task_complexity
from flowpilot.orchestration.enums import ObservationMode, TaskComplexity


def test_short_plans_are_simple_queries() -> None:
    analysis = analyze_task_complexity("Compare two providers and write a report", 2)
    assert analysis.complexity is TaskComplexity.SIMPLE_QUERY
    assert analysis.observation is ObservationMode.FAST


def test_direct_questions_are_simple_queries() -> None:
    analysis = analyze_task_complexity("What is the latest release of the docs site", 4)
    assert analysis.complexity is TaskComplexity.SIMPLE_QUERY


def test_mid_sized_plans_are_medium_tasks() -> None:
    analysis = analyze_task_complexity("Collect notes and draft a thread", 4)
    assert analysis.complexity is TaskComplexity.MEDIUM_TASK
    assert analysis.observation is ObservationMode.BALANCED


def test_long_plans_are_complex_workflows() -> None:
    analysis = analyze_task_complexity("Automate the weekly digest", 7)
    assert analysis.complexity is TaskComplexity.COMPLEX_WORKFLOW
    assert analysis.observation is ObservationMode.THOROUGH
    assert analysis.to_payload()["complexity"] == "complex_workflow"


def test_medium_wording_wins_over_plan_length() -> None:
    analysis = analyze_task_complexity("Analyze these feeds and summarize", 8)
    assert analysis.complexity is TaskComplexity.MEDIUM_TASK
