import pytest

from flowpilot.orchestration.contracts import (
    Classification,
    OperationChoice,
    ParameterTransform,
    PlannedStepPayload,
    ReplanPayload,
    enforce_contract,
)
from flowpilot.orchestration.enums import OraclePurpose
from flowpilot.orchestration.errors import OracleParseError


@pytest.mark.parametrize(
    "payload",
    [
        {"decision": True},
        {"shouldContinue": "true"},
        {"should_reinfer": "yes"},
        {"shouldReinfer": True, "reasoning": None},
    ],
)
def test_classification_accepts_known_decision_keys(payload):
    verdict = enforce_contract(Classification, payload, purpose=OraclePurpose.OBSERVATION)
    assert verdict.decision is True
    assert isinstance(verdict.reasoning, str)


@pytest.mark.parametrize("payload", [{"decision": "maybe"}, {"reasoning": "missing"}, ["decision"], None])
def test_classification_rejects_unusable_payloads(payload):
    with pytest.raises(OracleParseError):
        enforce_contract(Classification, payload, purpose=OraclePurpose.OBSERVATION)


def test_operation_choice_and_transform_aliases():
    choice = enforce_contract(OperationChoice, {"toolName": " search_docs "}, purpose=OraclePurpose.OPERATION_RESOLUTION)
    transform = enforce_contract(
        ParameterTransform,
        {"toolName": "", "inputParams": {"query": "alpha"}},
        purpose=OraclePurpose.PARAMETER_TRANSFORM,
    )

    assert choice.operation == "search_docs"
    assert transform.operation is None
    assert transform.args == {"query": "alpha"}


def test_transform_requires_args():
    with pytest.raises(OracleParseError):
        enforce_contract(ParameterTransform, {"operation": "x"}, purpose=OraclePurpose.PARAMETER_TRANSFORM)


def test_replan_payload_wraps_lists_and_single_steps():
    listed = enforce_contract(
        ReplanPayload,
        [{"mcp": "docs", "action": "fetch"}, {"capability": "docs", "operation": "export", "input": {"f": "md"}}],
        purpose=OraclePurpose.REPLANNING,
    )
    single = enforce_contract(
        ReplanPayload, {"steps": {"capability": "docs", "operation": "fetch"}}, purpose=OraclePurpose.REPLANNING
    )

    assert [step.operation for step in listed.steps] == ["fetch", "export"]
    assert len(single.steps) == 1


def test_planned_step_requires_capability_and_operation():
    with pytest.raises(ValueError):
        PlannedStepPayload.model_validate({"capability": "  ", "operation": "fetch"})
