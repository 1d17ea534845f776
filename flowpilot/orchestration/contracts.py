"""Pydantic contracts for structured oracle replies."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.logging import get_logger
from ..core.metrics import increment_oracle_parse_failure
from .enums import OraclePurpose
from .errors import OracleParseError

__all__ = [
    "Classification",
    "OperationChoice",
    "ParameterTransform",
    "PlannedStepPayload",
    "ReplanPayload",
    "enforce_contract",
]

logger = get_logger(name=__name__)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    raise ValueError("decision must be a boolean")


class Classification(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    decision: bool = Field(
        validation_alias=AliasChoices(
            "decision",
            "shouldReinfer",
            "should_reinfer",
            "shouldContinue",
            "should_continue",
        )
    )
    reasoning: str = Field(default="")

    @field_validator("decision", mode="before")
    @classmethod
    def _validate_decision(cls, value: Any) -> bool:
        return _coerce_bool(value)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> str:
        return "" if value is None else str(value)


class OperationChoice(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    operation: str = Field(
        min_length=1,
        validation_alias=AliasChoices("operation", "toolName", "tool_name", "name"),
    )


class ParameterTransform(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    operation: str | None = Field(
        default=None,
        validation_alias=AliasChoices("operation", "toolName", "tool_name"),
    )
    args: dict[str, Any] = Field(
        validation_alias=AliasChoices("args", "inputParams", "input_params", "arguments"),
    )

    @field_validator("operation")
    @classmethod
    def _blank_operation_is_none(cls, value: str | None) -> str | None:
        return value or None


class PlannedStepPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    capability: str = Field(min_length=1, validation_alias=AliasChoices("capability", "mcp"))
    operation: str = Field(min_length=1, validation_alias=AliasChoices("operation", "action"))
    input: Any = Field(default=None)
    reasoning: str = Field(default="")

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ReplanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: list[PlannedStepPayload] = Field(..., min_length=1)

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return [value]
        return value


def enforce_contract(model: type[BaseModel], payload: Any, *, purpose: OraclePurpose) -> Any:
    """Validate ``payload`` against ``model`` or raise ``OracleParseError``.

    A bare list is accepted for ``ReplanPayload`` and wrapped as ``{"steps": [...]}``.
    """
    if model is ReplanPayload and isinstance(payload, list):
        payload = {"steps": payload}
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        increment_oracle_parse_failure(purpose=purpose.value)
        logger.warning(
            "oracle_contract_rejected",
            purpose=purpose.value,
            contract=model.__name__,
            errors=exc.errors(include_url=False),
        )
        raise OracleParseError(f"{purpose.value} reply violates {model.__name__}") from exc
