"""File mutation tools guarded by the read-before-write invariant."""

from __future__ import annotations

import logging
from typing import List

from pydantic import Field

from ..snapshot import FileSnapshot, normalise_path
from ..state import OrchestrationState
from ..structured import CreateIntent, PatchIntent, TextEdit
from ..telemetry import emit_event
from .base import ToolInput, ToolName, ToolResult, ToolSpec
from .matcher import NormalisingMatcher, TextMatcher

__all__ = [
    "FileActionInput",
    "Modification",
    "ModifyActionInput",
    "create_file_action_tool",
    "create_modify_action_tool",
]

LOGGER = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


class FileActionInput(ToolInput):
    path: str = Field(min_length=1, description="Relative path from cwd")
    content: str = Field(description="Complete file content")


class Modification(ToolInput):
    before: str = Field(min_length=1, description="Exact text to find in file")
    after: str = Field(description="New text to replace with")


class ModifyActionInput(ToolInput):
    path: str = Field(min_length=1, description="Relative path from cwd")
    items: List[Modification] = Field(min_length=1, description="Array of modifications to apply to the file")


def _unread_rejection(path: str, content: str, *, retry_tool: str, steps: str) -> ToolResult:
    return ToolResult(
        complete=False,
        existing_file={"path": path, "content": content},
        system_message=(
            f"CRITICAL: File \"{path}\" already exists and must be read before it is changed.\n\n"
            f"Do NOT call {ToolName.READ_FILES_CONTENTS.value}: the complete current content is provided "
            "in 'existing_file'.\n\n"
            f"NEXT STEPS:\n{steps}\n"
            f"Then call {retry_tool} again. No additional tool calls are needed."
        ),
    )


def _reject_unread(
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
    path: str,
    *,
    tool: ToolName,
    steps: str,
) -> ToolResult | None:
    """Return a rejection carrying the file content when ``path`` has not been read."""
    if snapshot is None or not state.needs_read(snapshot, path) or state.has_read(path):
        return None
    content = snapshot.get_content(path)
    if content is None:
        return None
    LOGGER.warning("Existing file not read before %s: %s", tool.value, path)
    state.record_read(path)
    emit_event("tool.rejected", tool=tool.value, path=path, reason="unread")
    return _unread_rejection(path, content, retry_tool=tool.value, steps=steps)


def submit_file_action(
    arguments: FileActionInput,
    *,
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
) -> ToolResult:
    """Create a new file or replace an existing one with complete content."""
    path = normalise_path(arguments.path, snapshot.work_dir) if snapshot else normalise_path(arguments.path)
    content = arguments.content
    LOGGER.info("Submitting file action for: %s", path)

    with state.lock:
        rejection = _reject_unread(
            snapshot,
            state,
            path,
            tool=ToolName.SUBMIT_FILE_ACTION,
            steps=(
                "1. Review 'existing_file.content' to understand the current implementation.\n"
                "2. Keep its style, imports and important configuration.\n"
                "3. Submit the complete improved content."
            ),
        )
        if rejection is not None:
            return rejection
        state.record_write(path)

    emit_event("tool.accepted", tool=ToolName.SUBMIT_FILE_ACTION.value, path=path, size=len(content))
    return ToolResult(
        complete=True,
        payload={"path": path, "content_size": len(content), "type": "file"},
        intent=CreateIntent(path=path, content=content),
        system_message=f"File \"{path}\" created successfully ({len(content)} characters).",
    )


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_CHARS:
        return text[:_PREVIEW_CHARS] + "..."
    return text


def submit_modify_action(
    arguments: ModifyActionInput,
    *,
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
    matcher: TextMatcher,
) -> ToolResult:
    """Validate exact-text replacements against the current file content."""
    path = normalise_path(arguments.path, snapshot.work_dir) if snapshot else normalise_path(arguments.path)
    items = arguments.items
    LOGGER.info("Submitting modify action for: %s with %d modifications", path, len(items))

    with state.lock:
        if state.was_written(path):
            LOGGER.warning("File already modified in this turn: %s", path)
            emit_event("tool.rejected", tool=ToolName.SUBMIT_MODIFY_ACTION.value, path=path, reason="already_written")
            return ToolResult(
                complete=False,
                system_message=(
                    f"CRITICAL: File \"{path}\" was already modified in this turn.\n\n"
                    f"{ToolName.SUBMIT_MODIFY_ACTION.value} cannot be used on a file that was already changed.\n\n"
                    f"REQUIRED ACTION:\nUse {ToolName.SUBMIT_FILE_ACTION.value} instead with the complete "
                    "updated file content, including all of your changes."
                ),
            )

        rejection = _reject_unread(
            snapshot,
            state,
            path,
            tool=ToolName.SUBMIT_MODIFY_ACTION,
            steps=(
                "1. Review 'existing_file.content'.\n"
                "2. Find the EXACT text segment to modify and copy it character by character.\n"
                "3. Use that exact text as 'before'."
            ),
        )
        if rejection is not None:
            return rejection

        if all(item.before == item.after for item in items):
            emit_event("tool.rejected", tool=ToolName.SUBMIT_MODIFY_ACTION.value, path=path, reason="no_op")
            return ToolResult(
                complete=False,
                system_message=(
                    f"No changes: every modification for \"{path}\" has identical 'before' and 'after' text. "
                    "Submit only modifications that change the file, or finish if nothing needs to change."
                ),
            )

        content = snapshot.get_content(path) if snapshot is not None else None
        # Absent, empty and binary files contain no 'before' text.
        invalid = [
            {"index": index, "preview": _preview(item.before)}
            for index, item in enumerate(items, start=1)
            if not content or not matcher.matches(content, item.before, path=path)
        ]
        if invalid:
            LOGGER.warning("Invalid modifications found for %s: %d items", path, len(invalid))
            emit_event(
                "tool.rejected",
                tool=ToolName.SUBMIT_MODIFY_ACTION.value,
                path=path,
                reason="text_mismatch" if content else "no_text_content",
                invalid=len(invalid),
            )
            details = "\n".join(
                f"  - Modification #{entry['index']}: the 'before' text does not exist in the file\n"
                f"    Preview of what you tried: \"{entry['preview']}\""
                for entry in invalid
            )
            if not content:
                return ToolResult(
                    complete=False,
                    payload={"invalid_modifications": invalid},
                    system_message=(
                        f"CRITICAL ERROR: \"{path}\" does not exist or has no text content, so no 'before' "
                        f"text can match:\n\n{details}\n\n"
                        f"To create the file or write its first content, use {ToolName.SUBMIT_FILE_ACTION.value} "
                        "with the complete file content."
                    ),
                )
            return ToolResult(
                complete=False,
                payload={"invalid_modifications": invalid},
                system_message=(
                    f"CRITICAL ERROR: Some 'before' texts don't exist in \"{path}\":\n\n{details}\n\n"
                    "You MUST:\n"
                    "1. Review the file content you already read.\n"
                    "2. Find the EXACT text to replace, including all whitespace.\n"
                    "3. Copy it without any changes or assumptions into 'before'.\n"
                    "4. Try again."
                ),
            )

        state.record_write(path)

    count = len(items)
    emit_event("tool.accepted", tool=ToolName.SUBMIT_MODIFY_ACTION.value, path=path, modifications=count)
    return ToolResult(
        complete=True,
        payload={"path": path, "modifications_count": count, "type": "modify"},
        intent=PatchIntent(path=path, edits=tuple(TextEdit(item.before, item.after) for item in items)),
        system_message=(
            f"File \"{path}\" modified successfully ({count} {'change' if count == 1 else 'changes'} applied)."
        ),
    )


def create_file_action_tool(snapshot: FileSnapshot | None, state: OrchestrationState) -> ToolSpec:
    return ToolSpec(
        name=ToolName.SUBMIT_FILE_ACTION.value,
        description=(
            "Create a new file or overwrite an existing file with complete content. Use this for new files, "
            "small files (<100 lines), markdown files (*.md), or when rewriting most of a file."
        ),
        input_model=FileActionInput,
        handler=lambda arguments: submit_file_action(arguments, snapshot=snapshot, state=state),
    )


def create_modify_action_tool(
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
    *,
    matcher: TextMatcher | None = None,
) -> ToolSpec:
    active_matcher = matcher or NormalisingMatcher()
    return ToolSpec(
        name=ToolName.SUBMIT_MODIFY_ACTION.value,
        description=(
            "Modify an existing file by replacing exact text segments. The file MUST be read first with "
            f"{ToolName.READ_FILES_CONTENTS.value}. Use this for targeted changes in large files "
            "(1-10 small modifications)."
        ),
        input_model=ModifyActionInput,
        handler=lambda arguments: submit_modify_action(
            arguments,
            snapshot=snapshot,
            state=state,
            matcher=active_matcher,
        ),
    )
