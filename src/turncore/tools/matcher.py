"""Exact-text matching used to validate ``before`` segments of a patch."""

from __future__ import annotations

import re
from typing import Protocol

__all__ = [
    "ExactMatcher",
    "NormalisingMatcher",
    "TextMatcher",
    "normalise_content",
]

_MARKDOWN_CODE_BLOCK_RE = re.compile(r"^\s*```\w*\n([\s\S]*?)\n\s*```\s*$")
_CDATA_RE = re.compile(r"^\s*<!\[CDATA\[\n?([\s\S]*?)\n?\]\]>\s*$")
_ESCAPES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("\\n", "\n"),
    ("\\'", "'"),
    ('\\"', '"'),
)
_MARKUP_SUFFIXES = (".md",)


def normalise_content(text: str) -> str:
    """Unwrap a code fence or CDATA block and decode escaped entities."""
    match = _MARKDOWN_CODE_BLOCK_RE.match(text)
    if match:
        normalised = match.group(1)
    else:
        cdata = _CDATA_RE.match(text)
        normalised = cdata.group(1) if cdata else text
    for escaped, plain in _ESCAPES:
        normalised = normalised.replace(escaped, plain)
    return normalised


class TextMatcher(Protocol):
    """Decides whether a ``before`` segment is present in file content."""

    def matches(self, content: str, before: str, *, path: str) -> bool: ...


class ExactMatcher:
    """Verbatim substring check."""

    def matches(self, content: str, before: str, *, path: str) -> bool:
        return before in content


class NormalisingMatcher(ExactMatcher):
    """Verbatim check with a normalised retry for non-markup files."""

    def __init__(self, markup_suffixes: tuple[str, ...] = _MARKUP_SUFFIXES) -> None:
        self._markup_suffixes = tuple(suffix.lower() for suffix in markup_suffixes)

    def matches(self, content: str, before: str, *, path: str) -> bool:
        if super().matches(content, before, path=path):
            return True
        if path.lower().endswith(self._markup_suffixes):
            return False
        normalised = normalise_content(before)
        return bool(normalised) and normalised in content
