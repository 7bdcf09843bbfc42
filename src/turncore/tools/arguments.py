"""Decode loosely-typed tool arguments emitted by models."""

from __future__ import annotations

import ast
import json
import re
from collections.abc import Iterator, Mapping
from typing import Any

__all__ = ["ToolArgumentsError", "decode_arguments"]

_FENCED = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_QUOTE_FIXES = str.maketrans({"\u201c": '"', "\u201d": '"', "\ufeff": ""})
_UNPARSED = object()


class ToolArgumentsError(ValueError):
    """Raised when tool arguments cannot be decoded or fail their schema."""


def decode_arguments(raw: Any) -> dict[str, Any]:
    """Return ``raw`` as a JSON object, repairing common model formatting noise.

    Strings are tried as-is first, then with code fences, surrounding prose and
    trailing commas removed. Python dict literals are accepted as a last resort.
    The first candidate that parses decides the outcome.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise ToolArgumentsError(f"expected object arguments, got {type(raw).__name__}")

    text = raw.strip().translate(_QUOTE_FIXES)
    if not text:
        return {}

    for candidate in _candidates(text):
        value = _parse(candidate)
        if value is _UNPARSED:
            continue
        if not isinstance(value, dict):
            raise ToolArgumentsError(f"expected object arguments, got {type(value).__name__}")
        return value

    raise ToolArgumentsError(f"arguments are not valid JSON: {text[:200]}")


def _candidates(text: str) -> Iterator[str]:
    seen = {text}
    yield text
    match = _FENCED.match(text)
    body = match.group("body").strip() if match else text
    for candidate in (body, _embedded_object(body)):
        if candidate is None:
            continue
        candidate = _TRAILING_COMMA.sub(r"\1", candidate)
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, MemoryError, RecursionError):
        return _UNPARSED
    return _plain(literal)


def _embedded_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` or ``[...]`` span, ignoring brackets in strings."""
    start: int | None = None
    closers: list[str] = []
    quoted = False
    escape = False
    for position, char in enumerate(text):
        if quoted:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                quoted = False
        elif char == '"':
            quoted = True
        elif char in "{[":
            start = position if start is None else start
            closers.append("}" if char == "{" else "]")
        elif closers and char == closers[-1]:
            closers.pop()
            if not closers:
                return text[start : position + 1]
    return None


def _plain(value: Any) -> Any:
    """Reduce a Python literal to JSON-compatible values."""
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
