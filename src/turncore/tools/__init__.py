"""Tools the core contributes to every turn."""

from __future__ import annotations

from ..snapshot import FileSnapshot
from ..state import OrchestrationState
from .arguments import ToolArgumentsError, decode_arguments
from .base import (
    COMPLETE_FIELD,
    ToolInput,
    ToolName,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    UnknownToolError,
    serialise_tool_output,
)
from .matcher import ExactMatcher, NormalisingMatcher, TextMatcher, normalise_content
from .mutation import create_file_action_tool, create_modify_action_tool
from .read import create_read_files_tool, create_search_files_tool
from .recovery import RecoveryState, RepairTracker, create_recovery_tools, repair_tool_call
from .shell import ShellVerdict, classify_command, create_shell_action_tool


def create_read_tools(snapshot: FileSnapshot | None, state: OrchestrationState) -> ToolRegistry:
    return ToolRegistry([create_read_files_tool(snapshot, state), create_search_files_tool(snapshot)])


def create_mutation_tools(
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
    *,
    matcher: TextMatcher | None = None,
) -> ToolRegistry:
    return ToolRegistry(
        [
            create_file_action_tool(snapshot, state),
            create_modify_action_tool(snapshot, state, matcher=matcher),
            create_shell_action_tool(),
        ]
    )


def create_core_tools(
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
    *,
    host_tools: ToolRegistry | None = None,
    matcher: TextMatcher | None = None,
) -> ToolRegistry:
    """Merge host, read, mutation and recovery tools; later layers win on name clashes."""
    base = host_tools if host_tools is not None else ToolRegistry()
    return base.merge(
        create_read_tools(snapshot, state),
        create_mutation_tools(snapshot, state, matcher=matcher),
        create_recovery_tools(),
    )


__all__ = [
    "COMPLETE_FIELD",
    "ExactMatcher",
    "NormalisingMatcher",
    "RecoveryState",
    "RepairTracker",
    "ShellVerdict",
    "TextMatcher",
    "ToolArgumentsError",
    "ToolInput",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "UnknownToolError",
    "classify_command",
    "create_core_tools",
    "create_mutation_tools",
    "create_read_tools",
    "create_recovery_tools",
    "decode_arguments",
    "normalise_content",
    "repair_tool_call",
    "serialise_tool_output",
]
