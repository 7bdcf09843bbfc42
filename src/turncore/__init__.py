"""Orchestration core for a conversational coding assistant.

The package mediates between a model completion stream and a project file
snapshot: it validates proposed file and shell mutations, redirects faulty
tool calls, and assembles tiered context for each turn.
"""

from .config import ConfigError, Settings, load_settings
from .context_builder import ContextAssembler, Message, MessageTier, extract_message_properties
from .controller import (
    ResponseSegmentLimitError,
    StreamSession,
    StreamingController,
    TurnResult,
    has_tool_call,
    step_count_is,
)
from .models import (
    CompletionClient,
    CompletionRequest,
    ModelDescriptor,
    ModelResolutionError,
    ModelResolver,
    ProviderSpec,
    StreamPart,
    UsageTotals,
)
from .snapshot import FileEntry, FileSnapshot
from .state import OrchestrationState, ReadExemptions
from .structured import CreateIntent, PatchIntent, ShellCommandIntent, TextEdit, ToolCall
from .tools import ToolRegistry, ToolResult, ToolSpec, create_core_tools, repair_tool_call

__all__ = [
    "CompletionClient",
    "CompletionRequest",
    "ConfigError",
    "ContextAssembler",
    "CreateIntent",
    "FileEntry",
    "FileSnapshot",
    "Message",
    "MessageTier",
    "ModelDescriptor",
    "ModelResolutionError",
    "ModelResolver",
    "OrchestrationState",
    "PatchIntent",
    "ProviderSpec",
    "ReadExemptions",
    "ResponseSegmentLimitError",
    "Settings",
    "ShellCommandIntent",
    "StreamPart",
    "StreamSession",
    "StreamingController",
    "TextEdit",
    "ToolCall",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "TurnResult",
    "UsageTotals",
    "create_core_tools",
    "extract_message_properties",
    "has_tool_call",
    "load_settings",
    "repair_tool_call",
    "step_count_is",
]
