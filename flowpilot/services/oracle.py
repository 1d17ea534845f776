"""Language-model oracle consulted by the engine in its four decision roles.

Every method sends structured context and returns a typed reply. Anything the
model gets wrong (unreachable model, malformed JSON, contract violations)
surfaces as ``OracleParseError`` so each call site can apply its fallback.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Mapping, NoReturn, Protocol, runtime_checkable

from ..core.logging import get_logger
from ..core.metrics import increment_oracle_parse_failure
from ..orchestration.contracts import Classification, PlannedStepPayload, ReplanPayload, enforce_contract
from ..orchestration.enums import OraclePurpose
from ..orchestration.errors import OracleParseError
from ..utils.json_extract import parse_json_reply
from .llm import LLMService, LLMStreamError, is_llm_unavailable

logger = get_logger(name=__name__)

_JSON_ONLY = "Respond with a single JSON value and nothing else."

_SYSTEM_PROMPTS: dict[OraclePurpose, str] = {
    OraclePurpose.REINFERENCE_GATE: (
        "Decide whether the planned input of the next workflow step is usable as is, or whether it should be "
        "replaced by data derived from the previous step's result. Reply with "
        '{"decision": true|false, "reasoning": "..."} where true means replace. ' + _JSON_ONLY
    ),
    OraclePurpose.CONTEXT_INFERENCE: (
        "Derive the input object for the next workflow step strictly from the previous step's result. "
        "Copy literal values only. Never invent descriptive placeholders; if nothing applies return {}. " + _JSON_ONLY
    ),
    OraclePurpose.OPERATION_RESOLUTION: (
        "Pick the operation that best matches the requested action from the advertised operations. "
        'Reply with {"operation": "<exact advertised name>"}. ' + _JSON_ONLY
    ),
    OraclePurpose.PARAMETER_TRANSFORM: (
        "Produce the final arguments for the operation using exactly the property names of its input schema and "
        "honouring every constraint supplied. Reply with "
        '{"operation": "<operation name>", "args": {...}}. ' + _JSON_ONLY
    ),
    OraclePurpose.CONTENT_REWRITE: (
        "Rewrite the supplied content so it fits within max_length characters for the given medium while keeping "
        'its meaning. Reply with {"content": "..."}. ' + _JSON_ONLY
    ),
    OraclePurpose.OBSERVATION: (
        "Judge whether the objective is already fully satisfied by the execution history. Reply with "
        '{"decision": true|false, "reasoning": "..."} where true means more steps are still needed. ' + _JSON_ONLY
    ),
    OraclePurpose.REPLANNING: (
        "Recent workflow steps failed. Propose the remaining steps needed to reach the objective using only the "
        'available capabilities. Reply with [{"capability": "...", "operation": "...", "input": {...}, '
        '"reasoning": "..."}]. ' + _JSON_ONLY
    ),
    OraclePurpose.FORMATTING: (
        "Render the raw tool result as clear, readable Markdown for the user. Keep every fact; invent nothing. "
        "When the result is very large, keep only the fields relevant to the objective."
    ),
}

_GENERATION_PROMPT = "Perform the requested language task and reply with the result only."


def render_context(context: Mapping[str, Any]) -> str:
    return json.dumps(context, ensure_ascii=False, indent=2, default=str)


@runtime_checkable
class Oracle(Protocol):
    async def classify(self, context: Mapping[str, Any], *, purpose: OraclePurpose) -> Classification:
        ...

    async def extract(self, context: Mapping[str, Any], *, purpose: OraclePurpose) -> Any:
        ...

    async def plan(self, context: Mapping[str, Any]) -> list[PlannedStepPayload]:
        ...

    async def format(self, raw_result: Any, context: Mapping[str, Any]) -> str:
        ...

    def stream_format(self, raw_result: Any, context: Mapping[str, Any]) -> AsyncIterator[str]:
        ...

    async def generate(self, operation: str, args: Mapping[str, Any]) -> str:
        ...


class LLMOracle:
    """Oracle backed by ``LLMService``."""

    def __init__(self, llm: LLMService) -> None:
        self._llm = llm

    async def classify(self, context: Mapping[str, Any], *, purpose: OraclePurpose) -> Classification:
        payload = await self._ask_json(purpose, context)
        return enforce_contract(Classification, payload, purpose=purpose)

    async def extract(self, context: Mapping[str, Any], *, purpose: OraclePurpose) -> Any:
        return await self._ask_json(purpose, context)

    async def plan(self, context: Mapping[str, Any]) -> list[PlannedStepPayload]:
        payload = await self._ask_json(OraclePurpose.REPLANNING, context)
        return enforce_contract(ReplanPayload, payload, purpose=OraclePurpose.REPLANNING).steps

    async def format(self, raw_result: Any, context: Mapping[str, Any]) -> str:
        text = await self._complete(OraclePurpose.FORMATTING, self._format_prompt(raw_result, context))
        if not text.strip():
            self._reject(OraclePurpose.FORMATTING, "empty rendering")
        return text

    async def stream_format(self, raw_result: Any, context: Mapping[str, Any]) -> AsyncIterator[str]:
        prompt = self._format_prompt(raw_result, context)
        try:
            async for chunk in self._llm.stream(prompt, system_prompt=_SYSTEM_PROMPTS[OraclePurpose.FORMATTING]):
                yield chunk
        except LLMStreamError as exc:
            increment_oracle_parse_failure(purpose=OraclePurpose.FORMATTING.value)
            raise OracleParseError(f"formatting stream failed: {exc}") from exc

    async def generate(self, operation: str, args: Mapping[str, Any]) -> str:
        prompt = f"Operation: {operation}\nArguments:\n{render_context(args)}"
        text = await self._llm.generate(prompt, system_prompt=_GENERATION_PROMPT)
        if is_llm_unavailable(text):
            raise OracleParseError(f"language model unavailable for {operation}")
        return text

    async def _ask_json(self, purpose: OraclePurpose, context: Mapping[str, Any]) -> Any:
        text = await self._complete(purpose, render_context(context))
        try:
            return parse_json_reply(text)
        except ValueError as exc:
            self._reject(purpose, str(exc), reply=text[:200])

    async def _complete(self, purpose: OraclePurpose, prompt: str) -> str:
        text = await self._llm.generate(prompt, system_prompt=_SYSTEM_PROMPTS[purpose])
        if is_llm_unavailable(text):
            self._reject(purpose, "language model unavailable")
        logger.debug("oracle_reply", purpose=purpose.value, reply=text[:500])
        return text

    @staticmethod
    def _format_prompt(raw_result: Any, context: Mapping[str, Any]) -> str:
        body = raw_result if isinstance(raw_result, str) else json.dumps(raw_result, ensure_ascii=False, indent=2, default=str)
        return f"Context:\n{render_context(context)}\n\nRaw result:\n{body}"

    @staticmethod
    def _reject(purpose: OraclePurpose, reason: str, **extra: Any) -> NoReturn:
        increment_oracle_parse_failure(purpose=purpose.value)
        logger.warning("oracle_reply_unusable", purpose=purpose.value, reason=reason, **extra)
        raise OracleParseError(f"{purpose.value}: {reason}")


__all__ = ["LLMOracle", "Oracle", "render_context"]
