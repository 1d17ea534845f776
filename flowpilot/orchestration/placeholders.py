from __future__ import annotations

import re
from typing import Any, Collection, Mapping

_NUMERIC_ONLY = re.compile(r"^\d+$")
_TEMPLATED_TOKENS = (
    re.compile(r"^draft_?id$", re.IGNORECASE),
    re.compile(r"^id$", re.IGNORECASE),
    re.compile(r"^(your|actual)_\w+$", re.IGNORECASE),
    re.compile(r"^[a-z]+_?\d{1,3}$", re.IGNORECASE),
)
_BRACKETED = (
    re.compile(r"^\[.*\]$", re.DOTALL),
    re.compile(r"^<.*>$", re.DOTALL),
    re.compile(r"^\{.*\}$", re.DOTALL),
)
_PLACEHOLDER_WORDS = ("insert", "placeholder", "example", "sample", "template", "replace", "dummy")

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


def is_placeholder_identifier(value: Any) -> bool:
    """Return True when ``value`` looks like a templated stand-in rather than a real identifier.

    A missing or blank identifier counts as a placeholder: nothing verified is available.
    """
    if value is None:
        return True
    text = str(value).strip()
    if not text:
        return True
    if _NUMERIC_ONLY.match(text):
        return True
    if any(pattern.match(text) for pattern in _TEMPLATED_TOKENS):
        return True
    if any(pattern.match(text) for pattern in _BRACKETED):
        return True
    lowered = text.lower()
    return any(word in lowered for word in _PLACEHOLDER_WORDS)


def camel_to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()


def normalize_keys(args: Mapping[str, Any], schema_properties: Collection[str]) -> dict[str, Any]:
    """Rename camel-case keys to their snake-case form when the schema declares that form.

    Keys the schema already knows, and keys whose converted form it does not
    know, pass through unchanged.
    """
    if not schema_properties:
        return dict(args)
    normalized: dict[str, Any] = {}
    for key, value in args.items():
        if key in schema_properties:
            normalized[key] = value
            continue
        converted = camel_to_snake(key)
        if converted in schema_properties and converted not in args:
            normalized[converted] = value
        else:
            normalized[key] = value
    return normalized


__all__ = ["camel_to_snake", "is_placeholder_identifier", "normalize_keys"]
