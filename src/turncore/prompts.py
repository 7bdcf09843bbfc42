"""Prompt templates and helpers shared across context tiers."""

from __future__ import annotations

from typing import Sequence

from .tools.base import ToolName

SYSTEM_PROMPT = (
    "You are a specialized coding assistant working inside an existing TypeScript + Vite + React project.\n"
    "The user's request may be vague or verbose. Select ONE task that can be completed in a single response, "
    "announce it, then perform it.\n\n"
    "## Working with files\n"
    f"- Read every file you need in one {ToolName.READ_FILES_CONTENTS.value} call before changing it. "
    "Never read the same file twice in a turn.\n"
    f"- Use {ToolName.SUBMIT_FILE_ACTION.value} for new files, small files, markdown files, or full rewrites.\n"
    f"- Use {ToolName.SUBMIT_MODIFY_ACTION.value} for targeted edits. Copy each 'before' segment exactly "
    "from the file content, including whitespace.\n"
    f"- After rewriting a file with {ToolName.SUBMIT_FILE_ACTION.value}, do not patch it again in the same turn.\n"
    f"- Use {ToolName.SUBMIT_SHELL_ACTION.value} only for '<package-manager> add <package>' and 'rm <file>'.\n"
    "- The project manifest, the resource index and the status document are always provided up to date below; "
    "do not read them through tools.\n\n"
    "Do NOT be verbose and do not explain anything unless the user asks for more information."
)

DIFF_MODE_CONSTRAINTS = (
    "CRITICAL FILE OPERATION CONSTRAINTS:\n"
    "- Before any change to an existing file you MUST have its content; read it first if you have not.\n"
    "- Identify every file you need while planning and read them in one batch.\n"
    "- Never read the same file twice; reuse content you already have.\n"
    "- Follow the pattern: PLAN -> CHECK WHAT WAS READ -> READ UNREAD FILES -> EXECUTE.\n"
    "- Tool names must match the provided list exactly. Only call tools that exist in that list."
)

CONTINUE_PROMPT = (
    "Continue your prior response. IMPORTANT: Immediately begin from where you left off without any interruptions.\n"
    "Do not repeat any content, including tool calls."
)


def render_system_prompt(*, diff_mode: bool = False) -> str:
    """Return the static system prompt shared by every session."""
    if not diff_mode:
        return SYSTEM_PROMPT
    return (
        f"{SYSTEM_PROMPT}\n\n"
        f"Prefer {ToolName.SUBMIT_MODIFY_ACTION.value} over full rewrites for existing files larger than 100 lines."
    )


def render_project_files(paths: Sequence[str]) -> str:
    """List project files so the model knows what it can read."""
    listing = "\n".join(paths)
    return (
        "<PROJECT_DESCRIPTION>\n"
        "    This is a list of files that are part of the project. Always refer to the latest list. "
        "Use the tools to read file contents, reading every necessary file at once.\n"
        f"    <project_files>\n{listing}\n    </project_files>\n"
        "</PROJECT_DESCRIPTION>"
    )


def _render_inline_file(path: str, content: str | None) -> str:
    return f'<file path="{path}">\n{content or ""}\n</file>'


def render_manifest(path: str, content: str | None) -> str:
    """Render the package manifest, which must only change through the package manager."""
    return (
        "<PROJECT_DESCRIPTION>\n"
        f"    This is the {path} that configures the project. Do not edit it directly; to add a dependency "
        f"use {ToolName.SUBMIT_SHELL_ACTION.value} with `pnpm add <pkg>`. The contents are always up to date, "
        "so do not read this file through tools.\n"
        f"{_render_inline_file(path, content)}\n"
        "</PROJECT_DESCRIPTION>"
    )


def render_resource_index(path: str, content: str | None) -> str:
    """Render the resource index and the rules for extending it."""
    body = _render_inline_file(path, content) if content else ""
    return (
        "<resource_constraints>\n"
        f"<ResourceContext>\n{body}\n</ResourceContext>\n"
        f"Only use resource URLs listed in `{path}` or attached by the user. To use an attached resource, "
        f"add it to `{path}` first. The structure is fixed at two levels: category, then resource id, each "
        'entry holding "url", "description" and "metadata".\n'
        "</resource_constraints>"
    )


def render_status_doc(path: str, content: str | None) -> str:
    """Render the frequently-changing project status document."""
    return (
        "<PROJECT_DESCRIPTION>\n"
        f"    This is the {path} file that describes the project. The contents are always up to date, "
        "so do not read this file through tools. Update it whenever you change the codebase.\n"
        f"{_render_inline_file(path, content)}\n"
        "</PROJECT_DESCRIPTION>"
    )


def render_reference_documents(documents: Sequence[tuple[str, str]]) -> str:
    """Render documents the model may edit without reading them through tools first."""
    if not documents:
        return ""
    body = "\n".join(_render_inline_file(path, content) for path, content in documents)
    return (
        "<PROJECT_DOCUMENTS>\n"
        "    These files are always up to date, so do not read them through tools. Edit them directly "
        "with the content shown here as the starting point.\n"
        f"{body}\n"
        "</PROJECT_DOCUMENTS>"
    )


def render_attachments(attachments_json: str) -> str:
    return f"\n\n<Attachments>{attachments_json}</Attachments>"


__all__ = [
    "CONTINUE_PROMPT",
    "DIFF_MODE_CONSTRAINTS",
    "SYSTEM_PROMPT",
    "render_attachments",
    "render_manifest",
    "render_project_files",
    "render_reference_documents",
    "render_resource_index",
    "render_status_doc",
    "render_system_prompt",
]
