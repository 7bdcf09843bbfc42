"""Typed payloads that describe validated mutations and tool-call faults."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True, slots=True)
class TextEdit:
    """Exact-text replacement pair inside a patch."""

    before: str
    after: str

    def to_dict(self) -> dict[str, str]:
        return {"before": self.before, "after": self.after}


@dataclass(frozen=True, slots=True)
class CreateIntent:
    """Complete file payload that creates or replaces ``path``."""

    path: str
    content: str
    type: Literal["file"] = "file"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "path": self.path, "content": self.content}


@dataclass(frozen=True, slots=True)
class PatchIntent:
    """Ordered exact-text edits against an existing file."""

    path: str
    edits: tuple[TextEdit, ...]
    type: Literal["modify"] = "modify"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "modifications": [edit.to_dict() for edit in self.edits],
        }


@dataclass(frozen=True, slots=True)
class ShellCommandIntent:
    """Classified shell command handed to an external runner."""

    command: str
    kind: Literal["package_add", "delete_file"]
    type: Literal["shell"] = "shell"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "command": self.command, "kind": self.kind}


MutationIntent = Union[CreateIntent, PatchIntent, ShellCommandIntent]


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Tool invocation as emitted by the model."""

    id: str
    name: str
    args: Any = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UnknownTool:
    """The model addressed a tool name that is not registered."""

    name: str
    args: Any = None


@dataclass(frozen=True, slots=True)
class InvalidArguments:
    """The model's arguments failed the tool's input schema."""

    name: str
    args: Any
    message: str


ToolCallFault = Union[UnknownTool, InvalidArguments]


__all__ = [
    "CreateIntent",
    "InvalidArguments",
    "MutationIntent",
    "PatchIntent",
    "ShellCommandIntent",
    "TextEdit",
    "ToolCall",
    "ToolCallFault",
    "UnknownTool",
]
