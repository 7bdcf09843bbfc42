"""Tool specifications, results, and the registry that validates calls."""

from __future__ import annotations

import inspect
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..structured import MutationIntent, ToolCall
from ..telemetry import json_safe
from .arguments import ToolArgumentsError, decode_arguments

__all__ = [
    "COMPLETE_FIELD",
    "ToolInput",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "UnknownToolError",
    "serialise_tool_output",
]

COMPLETE_FIELD = "complete"


class ToolName(str, Enum):
    """Names of the tools contributed by the core."""

    SUBMIT_FILE_ACTION = "submit_file_action"
    SUBMIT_MODIFY_ACTION = "submit_modify_action"
    SUBMIT_SHELL_ACTION = "submit_shell_action"
    READ_FILES_CONTENTS = "read_files_contents"
    SEARCH_FILE_CONTENTS = "search_file_contents"
    # Prefixed so they cannot collide with host tools.
    UNKNOWN_HANDLER = "__system_unknownToolHandler"
    INVALID_TOOL_INPUT_HANDLER = "__system_invalidToolInputHandler"


class ToolInput(BaseModel):
    """Closed input schema shared by every core tool."""

    model_config = ConfigDict(extra="forbid")


@dataclass(slots=True)
class ToolResult:
    """Outcome of a tool call, serialised back to the model as a JSON object."""

    complete: bool
    system_message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    existing_file: Optional[Dict[str, str]] = None
    intent: Optional[MutationIntent] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {COMPLETE_FIELD: self.complete}
        data.update(self.payload)
        if self.existing_file is not None:
            data["existing_file"] = dict(self.existing_file)
        if self.intent is not None:
            data["intent"] = self.intent.to_dict()
        if self.system_message:
            data["systemMessage"] = self.system_message
        return data


ToolHandler = Callable[[Any], Any]


def _close_schema(value: Any) -> Any:
    """Recursively mark JSON Schema objects as rejecting unknown keys."""
    if isinstance(value, dict):
        if value.get("type") == "object" and "properties" in value:
            value.setdefault("additionalProperties", False)
        for key, child in list(value.items()):
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


@dataclass(slots=True)
class ToolSpec:
    """A callable tool exposed to the model.

    ``input_model`` is the closed schema validated at the boundary. Host tools
    may omit it, in which case any JSON object is accepted and passed through
    as a ``dict``. ``handler`` may be synchronous or a coroutine function.
    """

    name: str
    description: str
    handler: ToolHandler
    input_model: type[BaseModel] | None = None

    def json_schema(self) -> dict[str, Any]:
        if self.input_model is None:
            return {"type": "object"}
        return _close_schema(self.input_model.model_json_schema())

    def to_definition(self) -> dict[str, Any]:
        """Return the provider-neutral tool definition advertised to the model."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.json_schema(),
        }

    def validate(self, raw_args: Any) -> Any:
        """Decode and validate ``raw_args``; raises ``ToolArgumentsError``."""
        arguments = decode_arguments(raw_args)
        if self.input_model is None:
            return arguments
        try:
            return self.input_model.model_validate(arguments)
        except ValidationError as error:
            raise ToolArgumentsError(_summarise_validation_error(error)) from error

    async def invoke(self, arguments: Any) -> Any:
        result = self.handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def _summarise_validation_error(error: ValidationError) -> str:
    parts: list[str] = []
    for item in error.errors():
        location = ".".join(str(piece) for piece in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or str(error)


class UnknownToolError(KeyError):
    """Raised when a call addresses a tool name that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name


class ToolRegistry:
    """Name -> ``ToolSpec`` table; later registrations override earlier ones."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for spec in tools:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def merge(self, *others: "ToolRegistry | Iterable[ToolSpec] | Mapping[str, ToolSpec]") -> "ToolRegistry":
        """Return a new registry layering ``others`` over this one, in order."""
        merged = ToolRegistry(self._tools.values())
        for other in others:
            specs = other.values() if isinstance(other, Mapping) else other
            for spec in specs:
                merged.register(spec)
        return merged

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def values(self) -> Iterable[ToolSpec]:
        return self._tools.values()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [spec.to_definition() for spec in self._tools.values()]

    def prepare(self, call: ToolCall) -> tuple[ToolSpec, Any]:
        """Resolve ``call`` to its spec and validated arguments.

        Raises ``UnknownToolError`` for unregistered names and
        ``ToolArgumentsError`` when the arguments fail the input schema.
        """
        spec = self._tools.get(call.name)
        if spec is None:
            raise UnknownToolError(call.name)
        return spec, spec.validate(call.args)


def serialise_tool_output(output: Any) -> Any:
    """Convert a handler return value into a JSON-friendly tool result."""
    if isinstance(output, ToolResult):
        return output.to_dict()
    return json_safe(output)
