"""Helpers for pulling JSON payloads out of free-form model replies."""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

# Only a fence wrapping the whole reply is removed; fences inside string values are data.
_WRAPPING_FENCE = re.compile(r"^\s*```(?:json|JSON)?[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    match = _WRAPPING_FENCE.match(text)
    if match is None:
        return text.strip()
    return match.group(1).strip()


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket group opened at ``text[start]``, or None when it never closes."""
    expected: list[str] = []
    in_string = False
    escape_next = False
    for index in range(start, len(text)):
        char = text[index]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            expected.append(_CLOSERS[char])
        elif char in "}]":
            if char != expected.pop():
                return None
            if not expected:
                return index + 1
    return None


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` block in ``text``.

    Braces inside string literals (including escaped quotes) are ignored, so
    replies such as ``Sure! {"a": "}"} hope that helps`` yield ``{"a": "}"}``.
    """
    start = text.find("{")
    if start == -1:
        return None
    end = _balanced_end(text, start)
    return None if end is None else text[start:end]


def iter_json_candidates(text: str) -> Iterator[str]:
    """Yield balanced ``{...}`` and ``[...]`` blocks in order of where they open.

    A block that is yielded is skipped over, so nested groups are not repeated.
    """
    index = 0
    while index < len(text):
        if text[index] in _CLOSERS:
            end = _balanced_end(text, index)
            if end is not None:
                yield text[index:end]
                index = end
                continue
        index += 1


def parse_json_reply(text: str) -> Any:
    """Parse a model reply into JSON.

    Tries the whole (fence-stripped) reply first so bare arrays and scalars
    survive, then falls back to the first embedded object or array that
    decodes. Raises ``ValueError`` when nothing yields valid JSON.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ValueError("empty reply")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    last_error: json.JSONDecodeError | None = None
    for candidate in iter_json_candidates(cleaned):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
    if last_error is not None:
        raise ValueError(f"malformed JSON in reply: {last_error}") from last_error
    raise ValueError("no JSON object or array found in reply")


__all__ = ["extract_first_json_object", "iter_json_candidates", "parse_json_reply", "strip_code_fences"]
