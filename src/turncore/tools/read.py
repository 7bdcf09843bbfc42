"""Read-only tools that surface snapshot content to the model."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Union

from pydantic import Field, field_validator

from ..snapshot import FileSnapshot, normalise_path
from ..state import OrchestrationState
from .base import ToolInput, ToolName, ToolResult, ToolSpec

__all__ = [
    "ReadFilesInput",
    "SearchFilesInput",
    "create_read_files_tool",
    "create_search_files_tool",
    "search_snapshot",
]

LOGGER = logging.getLogger(__name__)

_MAX_SEARCH_MATCHES = 200


class ReadFilesInput(ToolInput):
    path_list: Union[List[str], str] = Field(
        alias="pathList",
        description="The list of paths to the files you want to read.",
    )

    model_config = ToolInput.model_config | {"populate_by_name": True}

    @field_validator("path_list", mode="after")
    @classmethod
    def _expand_paths(cls, value: Union[List[str], str]) -> List[str]:
        if isinstance(value, list):
            return value
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
        return [value]


def read_files_contents(
    arguments: ReadFilesInput,
    *,
    snapshot: FileSnapshot | None,
    state: OrchestrationState,
) -> ToolResult:
    """Return file contents and record each path as read for this turn."""
    files: list[dict[str, Any]] = []
    for raw_path in arguments.path_list:
        path = normalise_path(raw_path, snapshot.work_dir) if snapshot else normalise_path(raw_path)
        if state.has_read(path):
            files.append({"path": path, "skippedAsDuplicate": True})
            continue
        content = snapshot.get_content(path) if snapshot is not None else None
        if content is None:
            files.append({"path": path, "error": f"File not found / unreadable: {path}"})
            continue
        state.record_read(path)
        files.append({"path": path, "content": content})
    LOGGER.debug("Read %d path(s)", len(files))
    return ToolResult(complete=True, payload={"files": files})


class SearchFilesInput(ToolInput):
    pattern: str = Field(min_length=1, description="Text pattern or regular expression to search for")
    case_sensitive: bool = Field(default=False, alias="caseSensitive")
    before_lines: int = Field(default=0, ge=0, le=20, alias="beforeLines")
    after_lines: int = Field(default=0, ge=0, le=20, alias="afterLines")

    model_config = ToolInput.model_config | {"populate_by_name": True}


def _compile_pattern(pattern: str, case_sensitive: bool) -> re.Pattern[str]:
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error:
        return re.compile(re.escape(pattern), flags)


def search_snapshot(
    snapshot: FileSnapshot,
    pattern: str,
    *,
    case_sensitive: bool = False,
    before_lines: int = 0,
    after_lines: int = 0,
) -> list[dict[str, Any]]:
    """Grep-like search over text files in ``snapshot``."""
    regex = _compile_pattern(pattern, case_sensitive)
    results: list[dict[str, Any]] = []
    budget = _MAX_SEARCH_MATCHES
    for path in snapshot.file_paths():
        content = snapshot.get_content(path)
        if not content:
            continue
        lines = content.split("\n")
        matches: list[dict[str, Any]] = []
        for index, line in enumerate(lines):
            if not regex.search(line):
                continue
            start = max(index - before_lines, 0)
            end = min(index + after_lines + 1, len(lines))
            matches.append(
                {
                    "line": index + 1,
                    "text": line,
                    "contextLines": lines[start:end] if (before_lines or after_lines) else [],
                }
            )
            budget -= 1
            if budget <= 0:
                break
        if matches:
            results.append({"path": path, "matches": matches})
        if budget <= 0:
            break
    return results


def search_file_contents(arguments: SearchFilesInput, *, snapshot: FileSnapshot | None) -> ToolResult:
    results = (
        search_snapshot(
            snapshot,
            arguments.pattern,
            case_sensitive=arguments.case_sensitive,
            before_lines=arguments.before_lines,
            after_lines=arguments.after_lines,
        )
        if snapshot is not None
        else []
    )
    return ToolResult(
        complete=True,
        payload={
            "pattern": arguments.pattern,
            "totalMatches": sum(len(entry["matches"]) for entry in results),
            "matchingFiles": results,
        },
    )


def create_read_files_tool(snapshot: FileSnapshot | None, state: OrchestrationState) -> ToolSpec:
    return ToolSpec(
        name=ToolName.READ_FILES_CONTENTS.value,
        description=(
            "READ ONLY TOOL: Read the full contents of files at the given paths. Read every file you need in a "
            "single call. A path that was already read this turn is skipped."
        ),
        input_model=ReadFilesInput,
        handler=lambda arguments: read_files_contents(arguments, snapshot=snapshot, state=state),
    )


def create_search_files_tool(snapshot: FileSnapshot | None) -> ToolSpec:
    return ToolSpec(
        name=ToolName.SEARCH_FILE_CONTENTS.value,
        description=(
            "READ ONLY TOOL: Search file contents for a pattern or regular expression, similar to grep. "
            "Use it to locate definitions or text before reading whole files."
        ),
        input_model=SearchFilesInput,
        handler=lambda arguments: search_file_contents(arguments, snapshot=snapshot),
    )
