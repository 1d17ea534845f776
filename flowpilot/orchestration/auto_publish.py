"""Create-then-publish chaining.

When an operation creates a draft-like artifact, the artifact identifier is
pulled out of the creation result and the paired publish operation is invoked
right away. A failed publish never fails the creating step.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Iterable, Mapping, Sequence

from ..core import metrics
from ..core.config import ChainingRule
from ..core.logging import get_logger
from ..tools.exceptions import ToolError

logger = get_logger(name=__name__)

_FILE_ID_PATTERNS = (
    re.compile(r"with\s+id\s+([a-zA-Z0-9_.-]+\.json)", re.IGNORECASE),
    re.compile(r"\bid[:\s]+([a-zA-Z0-9_.-]+\.json)", re.IGNORECASE),
    re.compile(r"([a-zA-Z0-9_.-]*draft[a-zA-Z0-9_.-]*\.json)", re.IGNORECASE),
)
_MAX_SEARCH_DEPTH = 4


def canonical_capability(capability: str, aliases: Mapping[str, str]) -> str:
    lowered = capability.strip().lower()
    return aliases.get(lowered, lowered)


def find_rule(
    rules: Iterable[ChainingRule],
    capability: str,
    operation: str,
    *,
    aliases: Mapping[str, str],
    publish: bool = False,
) -> ChainingRule | None:
    """Return the first rule whose create (or, with ``publish``, publish) operation matches."""
    canonical = canonical_capability(capability, aliases)
    lowered = operation.lower()
    for rule in rules:
        if not rule.matches_capability(canonical):
            continue
        marker = rule.publish_operation if publish else rule.create_marker
        if marker.lower() in lowered:
            return rule
    return None


def _as_identifier(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _identifier_patterns(keys: Sequence[str]) -> list[re.Pattern[str]]:
    keyed = [
        re.compile(rf"\b{re.escape(key)}[\"']?\s*[:=]\s*[\"']?([A-Za-z0-9_.:-]+)", re.IGNORECASE)
        for key in keys
    ]
    keyed.insert(0, re.compile(r"draft[_-]?id[\"\s:]*([^\"\s,}]+)", re.IGNORECASE))
    return keyed + list(_FILE_ID_PATTERNS)


def extract_identifier_from_text(text: str, keys: Sequence[str]) -> str | None:
    stripped = text.strip()
    if stripped[:1] in {"{", "["}:
        try:
            found = _search_structured(json.loads(stripped), keys, depth=0)
        except ValueError:
            found = None
        if found:
            return found
    for pattern in _identifier_patterns(keys):
        match = pattern.search(text)
        if match:
            return match.group(1).strip("\"'")
    return None


def _search_structured(value: Any, keys: Sequence[str], *, depth: int) -> str | None:
    if depth > _MAX_SEARCH_DEPTH:
        return None
    if isinstance(value, Mapping):
        for key in keys:
            found = _as_identifier(value.get(key))
            if found:
                return found
        content = value.get("content")
        if isinstance(content, list):
            for entry in content:
                found = _search_structured(entry, keys, depth=depth + 1)
                if found:
                    return found
        text = value.get("text")
        if isinstance(text, str):
            return extract_identifier_from_text(text, keys)
        for nested in value.values():
            if isinstance(nested, (Mapping, list)):
                found = _search_structured(nested, keys, depth=depth + 1)
                if found:
                    return found
        return None
    if isinstance(value, list):
        for entry in value:
            found = _search_structured(entry, keys, depth=depth + 1)
            if found:
                return found
        return None
    if isinstance(value, str):
        return extract_identifier_from_text(value, keys)
    return None


def extract_identifier(raw_result: Any, keys: Sequence[str]) -> str | None:
    """Find an artifact identifier in a creation result.

    Looks at direct fields first, then the entries of a ``content`` list (whose
    ``text`` may embed JSON or free text), then falls back to pattern matching
    over the serialized result.
    """
    found = _search_structured(raw_result, keys, depth=0)
    if found:
        return found
    if isinstance(raw_result, str):
        return None
    serialized = json.dumps(raw_result, ensure_ascii=False, default=str)
    return extract_identifier_from_text(serialized, keys)


class AutoPublisher:
    def __init__(
        self,
        tools: Any,
        rules: Sequence[ChainingRule],
        *,
        aliases: Mapping[str, str] | None = None,
        enabled: bool = True,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._tools = tools
        self._rules = list(rules)
        self._aliases = dict(aliases or {})
        self._enabled = enabled
        self._timeout = timeout_seconds

    def match(self, capability: str, operation: str) -> ChainingRule | None:
        if not self._enabled:
            return None
        return find_rule(self._rules, capability, operation, aliases=self._aliases)

    async def chain(
        self,
        capability: str,
        operation: str,
        raw_result: Any,
        *,
        principal: str | None = None,
    ) -> Any:
        """Publish the artifact created by ``operation`` and return the merged result.

        Returns ``raw_result`` untouched when no rule applies or no identifier is found.
        """
        rule = self.match(capability, operation)
        if rule is None:
            return raw_result

        label = canonical_capability(capability, self._aliases)
        identifier = extract_identifier(raw_result, rule.identifier_keys)
        if identifier is None:
            metrics.increment_auto_publish(capability=label, outcome="no_identifier")
            logger.info("auto_publish_identifier_missing", capability=capability, operation=operation)
            return raw_result

        args = {rule.identifier_argument: identifier}
        logger.info(
            "auto_publish_started",
            capability=capability,
            operation=rule.publish_operation,
            identifier=identifier,
        )
        try:
            publish_result = await asyncio.wait_for(
                self._tools.invoke(capability, rule.publish_operation, args, principal),
                timeout=self._timeout,
            )
        except (ToolError, asyncio.TimeoutError) as exc:
            message = str(exc) or type(exc).__name__
            metrics.increment_auto_publish(capability=label, outcome="failed")
            logger.warning(
                "auto_publish_failed",
                capability=capability,
                operation=rule.publish_operation,
                identifier=identifier,
                error=message,
            )
            return {
                "creation_result": raw_result,
                "publish_error": message,
                "identifier": identifier,
                "published": False,
            }

        metrics.increment_auto_publish(capability=label, outcome="published")
        return {
            "creation_result": raw_result,
            "publish_result": publish_result,
            "identifier": identifier,
            "published": True,
        }


__all__ = [
    "AutoPublisher",
    "canonical_capability",
    "extract_identifier",
    "extract_identifier_from_text",
    "find_rule",
]
