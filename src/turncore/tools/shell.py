"""Intent classification for shell commands proposed by the model.

Nothing here executes a command. A command is accepted only when it matches
one of two narrow intents (adding packages or deleting one relative file) and
none of the forbidden forms; accepted commands are returned as a
``ShellCommandIntent`` for an external runner.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from typing import Literal

from pydantic import Field

from ..structured import ShellCommandIntent
from ..telemetry import emit_event
from .base import ToolInput, ToolName, ToolResult, ToolSpec

__all__ = [
    "ShellActionInput",
    "ShellVerdict",
    "classify_command",
    "create_shell_action_tool",
]

LOGGER = logging.getLogger(__name__)

_PACKAGE_MANAGERS = {"npm", "pnpm", "yarn", "bun"}
_ADD_VERBS = {"add"}
_NPM_INSTALL_VERBS = {"install", "i"}
_PACKAGE_TOKEN_RE = re.compile(r"^(?:@[A-Za-z0-9][\w.-]*/)?[A-Za-z0-9][\w.-]*(?:@[\w.^~=-]+)?$")
_ADD_FLAG_RE = re.compile(r"^(?:-D|-E|--dev|--save-dev|--exact|-O|--optional)$")

_DENY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\*"), "wildcards are not allowed"),
    (re.compile(r"\brm\s+(?:-\S*\s+)*-\S*[rR]"), "recursive deletes are not allowed"),
    (re.compile(r"\brm\s+--recursive\b"), "recursive deletes are not allowed"),
    (re.compile(r"^\s*(?:npm|yarn|pnpm|bun)\s+run\b"), "running scripts is not allowed"),
    (re.compile(r"&&|\|\||[;|`]|\$\(|[<>]"), "command chaining and redirection are not allowed"),
)


@dataclass(frozen=True, slots=True)
class ShellVerdict:
    """Classification outcome for a single command string."""

    allowed: bool
    reason: str = ""
    kind: Literal["package_add", "delete_file"] | None = None


def _is_safe_relative_path(path: str) -> bool:
    while path.startswith("./"):
        path = path[2:]
    if not path or path.startswith(("/", "~", "-")):
        return False
    if re.match(r"^[A-Za-z]:[\\/]", path):
        return False
    parts = re.split(r"[\\/]+", path)
    return ".." not in parts and all(part not in ("", ".") for part in parts[:-1]) and parts[-1] not in ("", ".")


def classify_command(command: str) -> ShellVerdict:
    """Return whether ``command`` is an allowed intent; the deny-list always wins."""
    trimmed = command.strip()
    if not trimmed:
        return ShellVerdict(False, "the command is empty")

    for pattern, reason in _DENY_PATTERNS:
        if pattern.search(trimmed):
            return ShellVerdict(False, reason)

    try:
        tokens = shlex.split(trimmed)
    except ValueError as error:
        return ShellVerdict(False, f"the command could not be parsed ({error})")

    program, args = tokens[0], tokens[1:]
    if program in _PACKAGE_MANAGERS and args:
        verb, rest = args[0], args[1:]
        is_add = verb in _ADD_VERBS or (program == "npm" and verb in _NPM_INSTALL_VERBS)
        packages = [token for token in rest if not _ADD_FLAG_RE.match(token)]
        if is_add and packages and all(_PACKAGE_TOKEN_RE.match(token) for token in packages):
            return ShellVerdict(True, kind="package_add")
        return ShellVerdict(False, "only '<package-manager> add <package-name>' is allowed")

    if program == "rm":
        if len(args) == 1 and _is_safe_relative_path(args[0]):
            return ShellVerdict(True, kind="delete_file")
        return ShellVerdict(False, "only 'rm <relative-file-path>' for a single file is allowed")

    return ShellVerdict(False, f"'{program}' is not an allowed command")


class ShellActionInput(ToolInput):
    command: str = Field(
        min_length=1,
        description=(
            "Shell command to execute. ALLOWED: pnpm/bun add <package-name>, rm <file-path>. "
            "FORBIDDEN: pnpm/bun run, ls, cd, mkdir, mv, cp, rm -rf, or any other command."
        ),
    )


def submit_shell_action(arguments: ShellActionInput) -> ToolResult:
    command = arguments.command
    LOGGER.info("Submitting shell action: %s", command)
    verdict = classify_command(command)
    if not verdict.allowed or verdict.kind is None:
        LOGGER.warning("Shell command blocked (%s): %s", verdict.reason, command)
        emit_event("tool.rejected", tool=ToolName.SUBMIT_SHELL_ACTION.value, command=command, reason=verdict.reason)
        return ToolResult(
            complete=False,
            system_message=(
                f"FORBIDDEN: The command \"{command}\" is not allowed: {verdict.reason}. "
                "Only package management (<package-manager> add <package-name>) and single file deletion "
                "(rm <file-path>) are permitted."
            ),
        )
    emit_event("tool.accepted", tool=ToolName.SUBMIT_SHELL_ACTION.value, command=command, kind=verdict.kind)
    return ToolResult(
        complete=True,
        payload={"command": command.strip(), "type": "shell"},
        intent=ShellCommandIntent(command=command.strip(), kind=verdict.kind),
        system_message=f"Shell command accepted for execution: {command.strip()}",
    )


def create_shell_action_tool() -> ToolSpec:
    return ToolSpec(
        name=ToolName.SUBMIT_SHELL_ACTION.value,
        description=(
            "Execute a shell command. ALLOWED COMMANDS ONLY: package management (pnpm/bun add <package-name>) "
            "and file deletion (rm <file-path>), the latter ONLY when the user explicitly asks for it."
        ),
        input_model=ShellActionInput,
        handler=submit_shell_action,
    )
