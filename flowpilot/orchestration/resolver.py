"""Turns a planned step into a concrete, schema-valid, tool-addressed call.

Stages, in order, each of which may be a no-op:

1. reinference gate: should the planned input be replaced by prior data?
2. context inference: derive an input from the previous step's result.
3. operation resolution: map the planned operation onto an advertised one.
4. key normalization: camelCase keys renamed to the schema's snake_case keys.
5. schema transform: the oracle rewrites args against the exact schema.
6. safety net: publishing with a placeholder identifier becomes a create.

Every oracle consultation degrades to a deterministic fallback when the
reply cannot be used.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Sequence

from ..core.config import ChainingRule
from ..core.logging import get_logger
from ..services.tools import OperationSchema
from ..tools.exceptions import ToolError
from .auto_publish import find_rule
from .contracts import OperationChoice, ParameterTransform, enforce_contract
from .enums import OraclePurpose
from .errors import OracleParseError, ResolutionError
from .placeholders import camel_to_snake, is_placeholder_identifier, normalize_keys
from .state import ResolvedCall, RunState, Step

logger = get_logger(name=__name__)

_TEXT_FIELDS = ("text", "content", "summary", "result")
_COPYABLE_FIELDS = ("text", "content", "query", "id")
_SEARCH_MARKERS = ("search", "find", "query", "lookup")
_LOOKUP_MARKERS = frozenset({"get", "fetch", "read", "retrieve"})
_TRUNCATION_SUFFIX = "..."


def is_empty_input(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple)) and not value:
        return True
    return isinstance(value, str) and not value.strip()


def as_argument_object(value: Any) -> dict[str, Any]:
    if is_empty_input(value):
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {"input": value}


def preview(value: Any, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    if len(text) <= limit:
        return text
    return text[:limit] + _TRUNCATION_SUFFIX


def text_from_result(value: Any, *, depth: int = 0) -> str | None:
    """Best-effort human text carried by a tool result."""
    if depth > 4 or value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, Mapping):
        for key in _TEXT_FIELDS:
            found = text_from_result(value.get(key), depth=depth + 1)
            if found:
                return found
        return None
    if isinstance(value, list):
        parts = [text_from_result(item, depth=depth + 1) for item in value]
        joined = "\n".join(part for part in parts if part)
        return joined or None
    return None


def _operation_tokens(operation: str) -> set[str]:
    return {token for token in re.split(r"[^a-z0-9]+", camel_to_snake(operation)) if token}


def infer_input_heuristically(operation: str, last_result: Any) -> dict[str, Any]:
    """Deterministic stand-in for context inference when the oracle reply is unusable."""
    lowered = operation.lower()
    text = text_from_result(last_result)

    if any(marker in lowered for marker in _SEARCH_MARKERS) and text:
        return {"query": text}
    if isinstance(last_result, Mapping):
        if _LOOKUP_MARKERS & _operation_tokens(operation) and last_result.get("id") is not None:
            return {"id": last_result["id"]}
        for key in _COPYABLE_FIELDS:
            value = last_result.get(key)
            if isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip():
                return {key: value}
    if text:
        return {"content": text}
    return {}


def truncate_content(content: str, max_length: int) -> str:
    if len(content) <= max_length:
        return content
    return content[: max(0, max_length - len(_TRUNCATION_SUFFIX))] + _TRUNCATION_SUFFIX


class ParameterResolver:
    def __init__(
        self,
        oracle: Any,
        tools: Any,
        *,
        rules: Sequence[ChainingRule] = (),
        aliases: Mapping[str, str] | None = None,
        content_max_length: int = 280,
        history_tail: int = 3,
        preview_chars: int = 500,
    ) -> None:
        self._oracle = oracle
        self._tools = tools
        self._rules = list(rules)
        self._aliases = dict(aliases or {})
        self._content_max_length = content_max_length
        self._history_tail = history_tail
        self._preview_chars = preview_chars

    async def resolve(self, step: Step, state: RunState, *, use_gate: bool = True) -> ResolvedCall:
        nominal = step.nominal_input
        needs_inference = is_empty_input(nominal)
        if not needs_inference and use_gate and state.has_last_result:
            needs_inference = await self._reinference_gate(step, state)

        if needs_inference and state.has_last_result:
            inferred = await self._infer_from_context(step, state)
            if not is_empty_input(inferred):
                nominal = inferred
            else:
                logger.info("context_inference_empty", step=step.index, kept_nominal=not is_empty_input(nominal))

        args = as_argument_object(nominal)

        if step.is_language_model_operation:
            return ResolvedCall(
                capability=step.capability,
                resolved_operation=step.operation,
                args=args,
                is_language_model_operation=True,
            )

        operations = await self._list_operations(step, state)
        operation = await self._resolve_operation(step, operations)
        if not operation.strip():
            raise ResolutionError(f"no operation could be matched for step {step.index} on {step.capability}")

        schema = next((candidate for candidate in operations if candidate.name == operation), None)
        if schema is not None:
            args = normalize_keys(args, schema.property_names)
            operation, args = await self._transform(step, state, operation, args, schema, operations)

        operation, args = await self._safety_net(step, state, operation, args)

        logger.info(
            "step_resolved",
            step=step.index,
            capability=step.capability,
            planned_operation=step.operation,
            operation=operation,
            arg_keys=sorted(args.keys()),
        )
        return ResolvedCall(capability=step.capability, resolved_operation=operation, args=args)

    async def _reinference_gate(self, step: Step, state: RunState) -> bool:
        context = {
            "capability": step.capability,
            "operation": step.operation,
            "nominal_input": step.nominal_input,
            "recent_history": [record.to_payload() for record in state.recent_records(self._history_tail)],
            "scratchpad": {key: preview(value, self._preview_chars) for key, value in state.scratchpad.items()},
        }
        try:
            verdict = await self._oracle.classify(context, purpose=OraclePurpose.REINFERENCE_GATE)
        except OracleParseError as exc:
            fallback = state.has_last_result
            logger.warning("reinference_gate_parse_failed", step=step.index, error=str(exc), reinfer=fallback)
            return fallback
        logger.debug("reinference_gate_decided", step=step.index, reinfer=verdict.decision, reasoning=verdict.reasoning)
        return verdict.decision

    async def _infer_from_context(self, step: Step, state: RunState) -> Any:
        context = {
            "objective": state.objective,
            "capability": step.capability,
            "operation": step.operation,
            "nominal_input": step.nominal_input,
            "previous_result": preview(state.last_result, self._preview_chars * 4),
            "rules": [
                "Use only literal data found in previous_result.",
                "Never emit descriptive placeholders; return {} when nothing applies.",
            ],
        }
        try:
            reply = await self._oracle.extract(context, purpose=OraclePurpose.CONTEXT_INFERENCE)
        except OracleParseError as exc:
            logger.warning("context_inference_parse_failed", step=step.index, error=str(exc))
            return infer_input_heuristically(step.operation, state.last_result)
        if not isinstance(reply, Mapping):
            logger.warning("context_inference_not_object", step=step.index, reply_type=type(reply).__name__)
            return infer_input_heuristically(step.operation, state.last_result)
        return dict(reply)

    async def _list_operations(self, step: Step, state: RunState) -> list[OperationSchema]:
        try:
            return list(await self._tools.list_operations(step.capability, state.principal))
        except ToolError as exc:
            logger.warning("operation_listing_failed", step=step.index, capability=step.capability, error=str(exc))
            return []

    async def _resolve_operation(self, step: Step, operations: list[OperationSchema]) -> str:
        names = [operation.name for operation in operations]
        if step.operation in names or not names:
            return step.operation

        context = {
            "capability": step.capability,
            "requested_operation": step.operation,
            "operations": [operation.describe() for operation in operations],
        }
        try:
            reply = await self._oracle.extract(context, purpose=OraclePurpose.OPERATION_RESOLUTION)
            if isinstance(reply, str):
                reply = {"operation": reply}
            choice = enforce_contract(OperationChoice, reply, purpose=OraclePurpose.OPERATION_RESOLUTION)
        except OracleParseError as exc:
            logger.warning("operation_resolution_parse_failed", step=step.index, error=str(exc), fallback=names[0])
            return names[0]

        if choice.operation in names:
            logger.info("operation_resolved", step=step.index, requested=step.operation, resolved=choice.operation)
            return choice.operation
        logger.warning(
            "operation_resolution_out_of_set",
            step=step.index,
            requested=step.operation,
            proposed=choice.operation,
            fallback=names[0],
        )
        return names[0]

    async def _transform(
        self,
        step: Step,
        state: RunState,
        operation: str,
        args: dict[str, Any],
        schema: OperationSchema,
        operations: list[OperationSchema],
    ) -> tuple[str, dict[str, Any]]:
        constraints = [
            f"Text published to {step.capability} must not exceed {self._content_max_length} characters.",
            "Prefer a create operation over publishing an existing draft unless a verified, "
            "non-placeholder identifier from a previous step is available.",
        ]
        context = {
            "objective": state.objective,
            "capability": step.capability,
            "operation": operation,
            "args": args,
            "input_schema": schema.input_schema,
            "property_names": schema.property_names,
            "available_operations": [candidate.name for candidate in operations],
            "previous_result": preview(state.last_result, self._preview_chars) if state.has_last_result else None,
            "constraints": constraints,
        }
        try:
            reply = await self._oracle.extract(context, purpose=OraclePurpose.PARAMETER_TRANSFORM)
            transform = enforce_contract(ParameterTransform, reply, purpose=OraclePurpose.PARAMETER_TRANSFORM)
        except OracleParseError as exc:
            logger.warning("parameter_transform_parse_failed", step=step.index, error=str(exc))
            return operation, args

        names = {candidate.name for candidate in operations}
        resolved_operation = operation
        if transform.operation and transform.operation != operation:
            if transform.operation in names:
                resolved_operation = transform.operation
            else:
                logger.warning(
                    "parameter_transform_unknown_operation",
                    step=step.index,
                    proposed=transform.operation,
                    kept=operation,
                )
        return resolved_operation, transform.args

    async def _safety_net(
        self,
        step: Step,
        state: RunState,
        operation: str,
        args: dict[str, Any],
    ) -> tuple[str, dict[str, Any]]:
        rule = find_rule(self._rules, step.capability, operation, aliases=self._aliases, publish=True)
        if rule is None:
            return operation, args

        identifier = args.get(rule.identifier_argument)
        if identifier is None:
            identifier = next((args[key] for key in rule.identifier_keys if args.get(key) is not None), None)
        if not is_placeholder_identifier(identifier):
            return operation, args

        content = self._best_available_content(state)
        content = await self._rewrite_content(step, content)
        logger.warning(
            "publish_placeholder_identifier_replaced",
            step=step.index,
            operation=operation,
            identifier=identifier,
            replacement=rule.create_operation,
        )
        return rule.create_operation, {rule.content_argument: content}

    @staticmethod
    def _best_available_content(state: RunState) -> str:
        for record in reversed(state.records):
            if record.success:
                text = text_from_result(record.result)
                if text:
                    return text
        text = text_from_result(state.last_result)
        return text or state.objective

    async def _rewrite_content(self, step: Step, content: str) -> str:
        context = {
            "medium": step.capability,
            "content": content,
            "max_length": self._content_max_length,
        }
        try:
            reply = await self._oracle.extract(context, purpose=OraclePurpose.CONTENT_REWRITE)
        except OracleParseError as exc:
            logger.warning("content_rewrite_parse_failed", step=step.index, error=str(exc))
            return truncate_content(content, self._content_max_length)

        rewritten = reply.get("content") if isinstance(reply, Mapping) else reply
        if not isinstance(rewritten, str) or not rewritten.strip():
            return truncate_content(content, self._content_max_length)
        return truncate_content(rewritten.strip(), self._content_max_length)


__all__ = [
    "ParameterResolver",
    "as_argument_object",
    "infer_input_heuristically",
    "is_empty_input",
    "preview",
    "text_from_result",
    "truncate_content",
]
