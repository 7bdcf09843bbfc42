"""Fault sinks for unknown tool names and arguments that fail their schema.

A faulty call is never surfaced to the caller as an exception. It is
redirected to one of two hidden handlers whose descriptions are empty, so the
model only ever meets them through a repair, and whose results explain what
went wrong so the model can try again.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import Field

from ..structured import InvalidArguments, ToolCall, ToolCallFault, UnknownTool
from ..telemetry import emit_event
from .base import ToolInput, ToolName, ToolRegistry, ToolResult, ToolSpec

__all__ = [
    "InvalidToolInputArgs",
    "RecoveryState",
    "RepairTracker",
    "UnknownToolArgs",
    "create_recovery_tools",
    "repair_tool_call",
]

LOGGER = logging.getLogger(__name__)

_HANDLER_NAMES = frozenset({ToolName.UNKNOWN_HANDLER.value, ToolName.INVALID_TOOL_INPUT_HANDLER.value})


class RecoveryState(str, Enum):
    NORMAL = "normal"
    REPAIRING = "repairing"


class UnknownToolArgs(ToolInput):
    original_tool: str = Field(alias="originalTool")
    original_args: Any = Field(default=None, alias="originalArgs")

    model_config = ToolInput.model_config | {"populate_by_name": True}


class InvalidToolInputArgs(UnknownToolArgs):
    error: str = ""


def repair_tool_call(call: ToolCall, fault: ToolCallFault) -> ToolCall | None:
    """Return the substitute call that absorbs ``fault``, or ``None``.

    ``None`` means the call cannot be repaired: it already addresses one of
    the handlers, so redirecting it again would loop.
    """
    if call.name in _HANDLER_NAMES:
        return None
    if isinstance(fault, UnknownTool):
        return ToolCall(
            id=call.id,
            name=ToolName.UNKNOWN_HANDLER.value,
            args={"originalTool": fault.name, "originalArgs": fault.args},
        )
    if isinstance(fault, InvalidArguments):
        return ToolCall(
            id=call.id,
            name=ToolName.INVALID_TOOL_INPUT_HANDLER.value,
            args={"originalTool": fault.name, "originalArgs": fault.args, "error": fault.message},
        )
    raise TypeError(f"Unsupported tool-call fault: {type(fault).__name__}")


class RepairTracker:
    """Per-turn record of redirected calls.

    The tracker is ``REPAIRING`` from the moment a fault is redirected until
    the substitute call's result has been delivered.
    """

    def __init__(self) -> None:
        self.state = RecoveryState.NORMAL
        self.faults: list[ToolCallFault] = []

    @property
    def repairs(self) -> int:
        return len(self.faults)

    def repair(self, call: ToolCall, fault: ToolCallFault) -> ToolCall | None:
        substitute = repair_tool_call(call, fault)
        if substitute is None:
            LOGGER.error("Cannot repair call to %s: it already targets a recovery handler", call.name)
            return None
        self.state = RecoveryState.REPAIRING
        self.faults.append(fault)
        LOGGER.warning("Redirecting faulty call %s (%s) to %s", call.name, type(fault).__name__, substitute.name)
        emit_event(
            "tool.repaired",
            call_id=call.id,
            tool=call.name,
            fault=type(fault).__name__,
            handler=substitute.name,
        )
        return substitute

    def settle(self) -> None:
        self.state = RecoveryState.NORMAL


def handle_unknown_tool(arguments: UnknownToolArgs) -> ToolResult:
    LOGGER.warning("Unknown tool called: %s", arguments.original_tool)
    return ToolResult(
        complete=True,
        payload={
            "result": f"Tool '{arguments.original_tool}' is not registered. Please use one of the available tools.",
        },
    )


def handle_invalid_tool_input(arguments: InvalidToolInputArgs) -> ToolResult:
    LOGGER.warning("Invalid input for tool %s: %s", arguments.original_tool, arguments.error)
    return ToolResult(
        complete=True,
        payload={
            "result": (
                f"Tool '{arguments.original_tool}' was called with invalid arguments: {arguments.error}. "
                "Please call it again with arguments that match its input schema."
            ),
        },
    )


def create_recovery_tools() -> ToolRegistry:
    # Empty descriptions keep the handlers out of the model's deliberate choices.
    return ToolRegistry(
        [
            ToolSpec(
                name=ToolName.UNKNOWN_HANDLER.value,
                description="",
                input_model=UnknownToolArgs,
                handler=handle_unknown_tool,
            ),
            ToolSpec(
                name=ToolName.INVALID_TOOL_INPUT_HANDLER.value,
                description="",
                input_model=InvalidToolInputArgs,
                handler=handle_invalid_tool_input,
            ),
        ]
    )
