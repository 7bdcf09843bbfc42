"""Assemble the per-turn message sequence in prompt-cache tier order."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import IntEnum
from fnmatch import fnmatchcase
from typing import Any

from . import prompts
from .config import Settings
from .snapshot import FileSnapshot
from .state import ReadExemptions

__all__ = [
    "ANTHROPIC_CACHE_OPTIONS",
    "ContextAssembler",
    "HistoryView",
    "Message",
    "MessageProperties",
    "MessageTier",
    "extract_message_properties",
    "scrub_assistant_text",
]

LOGGER = logging.getLogger(__name__)

ANTHROPIC_CACHE_OPTIONS: dict[str, Any] = {"anthropic": {"cacheControl": {"type": "ephemeral"}}}

_MODEL_TAG_RE = re.compile(r"^\[Model: (.*?)\]\n\n")
_PROVIDER_TAG_RE = re.compile(r"\[Provider: (.*?)\]\n\n")
_ATTACHMENTS_TAG_RE = re.compile(r"\[Attachments: (.*?)\]\n\n")
_USE_DIFF_TAG_RE = re.compile(r"\[UseDiff:\s*(.+?)\]")
_DEV_TAG_RE = re.compile(r"<__DEV__>(.*?)</__DEV__>", re.DOTALL)

_ASSISTANT_SCRUB_PATTERNS = (
    re.compile(r'<div class=\\?"__boltThought__\\?">.*?</div>', re.DOTALL),
    re.compile(r"<think>.*?</think>", re.DOTALL),
    re.compile(r"<boltAction[^>]*>[\s\S]*?</boltAction>"),
    re.compile(r"<toolCall[^>]*>[\s\S]*?</toolCall>"),
    re.compile(r"<toolResult[^>]*>[\s\S]*?</toolResult>"),
)


class MessageTier(IntEnum):
    """Assembly position; lower tiers change least often between requests."""

    STATIC = 0
    PROJECT_TYPE = 1
    PROJECT_CONTEXT = 2
    DYNAMIC = 3
    PENDING_TOOL_RESULTS = 4
    HISTORY = 5


@dataclass(slots=True)
class Message:
    """Role-tagged chat message ready for a completion call.

    ``content`` is either plain text or a list of content parts such as
    ``{"type": "text", "text": ...}``; non-text parts pass through untouched.
    """

    role: str
    content: Any
    tier: MessageTier = MessageTier.HISTORY
    provider_options: dict[str, Any] | None = None

    @classmethod
    def coerce(cls, value: Any, *, tier: MessageTier = MessageTier.HISTORY) -> "Message":
        if isinstance(value, Message):
            return value
        if isinstance(value, Mapping):
            content = value.get("content")
            if content is None and value.get("parts") is not None:
                content = list(value["parts"])
            return cls(
                role=str(value.get("role") or "user"),
                content=content if content is not None else "",
                tier=tier,
                provider_options=value.get("providerOptions") or value.get("provider_options"),
            )
        if isinstance(value, str):
            return cls(role="user", content=value, tier=tier)
        raise TypeError(f"Cannot build a message from {type(value).__name__}")

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        for part in self.content or ():
            if isinstance(part, Mapping) and part.get("type") == "text":
                return str(part.get("text") or "")
        return ""

    def is_blank(self) -> bool:
        if isinstance(self.content, str):
            return not self.content.strip()
        for part in self.content or ():
            if not isinstance(part, Mapping) or part.get("type") != "text":
                return False
            if str(part.get("text") or "").strip():
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.provider_options:
            data["providerOptions"] = self.provider_options
        return data


@dataclass(slots=True)
class MessageProperties:
    """Metadata a user message carries in its leading tags."""

    content: Any
    model: str | None = None
    provider: str | None = None
    diff_mode: bool | None = None
    attachments: list[Any] = field(default_factory=list)


def _strip_metadata(text: str) -> str:
    text = _MODEL_TAG_RE.sub("", text, count=1)
    text = _PROVIDER_TAG_RE.sub("", text, count=1)
    text = _ATTACHMENTS_TAG_RE.sub("", text, count=1)
    text = _DEV_TAG_RE.sub("", text)
    return _USE_DIFF_TAG_RE.sub("", text, count=1)


def extract_message_properties(message: Message | Mapping[str, Any] | str) -> MessageProperties:
    """Split a user message into its metadata tags and cleaned content."""
    coerced = Message.coerce(message)
    text = coerced.text()

    model_match = _MODEL_TAG_RE.search(text)
    provider_match = _PROVIDER_TAG_RE.search(text)
    diff_match = _USE_DIFF_TAG_RE.search(text)
    attachments_match = _ATTACHMENTS_TAG_RE.search(text)

    attachments: list[Any] = []
    if attachments_match:
        try:
            parsed = json.loads(attachments_match.group(1))
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed attachments tag")
        else:
            if isinstance(parsed, list):
                attachments = parsed
    suffix = prompts.render_attachments(json.dumps(attachments)) if attachments else ""

    if isinstance(coerced.content, str):
        content: Any = _strip_metadata(coerced.content) + suffix
    else:
        content = [
            {"type": "text", "text": _strip_metadata(str(part.get("text") or "")) + suffix}
            if isinstance(part, Mapping) and part.get("type") == "text"
            else part
            for part in coerced.content or ()
        ]

    return MessageProperties(
        content=content,
        model=model_match.group(1) if model_match else None,
        provider=provider_match.group(1) if provider_match else None,
        diff_mode=(diff_match.group(1).strip() == "true") if diff_match else None,
        attachments=attachments,
    )


def scrub_assistant_text(text: str) -> str:
    """Remove thinking blocks and replayed action/tool markup from assistant text."""
    for pattern in _ASSISTANT_SCRUB_PATTERNS:
        text = pattern.sub("", text)
    return text


def _scrub_assistant_content(content: Any) -> Any:
    if isinstance(content, str):
        return scrub_assistant_text(content)
    return [
        {**part, "text": scrub_assistant_text(str(part.get("text") or ""))}
        if isinstance(part, Mapping) and part.get("type") == "text"
        else part
        for part in content or ()
    ]


@dataclass(slots=True)
class HistoryView:
    """Cleaned history plus the turn settings its user messages selected.

    The last tagged user message wins for ``model``, ``provider`` and
    ``diff_mode``.
    """

    messages: list[Message]
    model: str | None = None
    provider: str | None = None
    diff_mode: bool | None = None


class ContextAssembler:
    """Builds the tiered message list for a single turn."""

    DEFAULT_HISTORY_WINDOW = 3
    _IGNORE_PATTERNS = (
        "node_modules/*",
        ".git/*",
        "dist/*",
        "build/*",
        ".next/*",
        "coverage/*",
        ".cache/*",
        ".vscode/*",
        ".idea/*",
        "*.log",
        "*.DS_Store",
        "*lock.json",
        "*lock.yml",
        "*lock.yaml",
    )

    def __init__(
        self,
        *,
        history_window: int | None = None,
        manifest_path: str = "package.json",
        resource_index: str = "src/assets.json",
        status_doc: str = "PROJECT.md",
        system_prompt: str | None = None,
        exemptions: ReadExemptions | None = None,
    ) -> None:
        self._history_window = self.DEFAULT_HISTORY_WINDOW if history_window is None else history_window
        self._manifest_path = manifest_path
        self._resource_index = resource_index
        self._status_doc = status_doc
        self._system_prompt = system_prompt
        self._exemptions = exemptions if exemptions is not None else ReadExemptions()

    @classmethod
    def from_settings(cls, settings: Settings) -> ContextAssembler:
        return cls(
            history_window=settings.context.history_window,
            manifest_path=settings.project.manifest_path,
            resource_index=settings.project.resource_index,
            status_doc=settings.project.status_doc,
            exemptions=settings.exemptions(),
        )

    @property
    def history_window(self) -> int:
        return self._history_window

    def prepare_history(self, history: Sequence[Message | Mapping[str, Any] | str]) -> HistoryView:
        """Strip user metadata tags and scrub assistant markup."""
        view = HistoryView(messages=[])
        for raw in history:
            message = Message.coerce(raw)
            if message.role == "user":
                properties = extract_message_properties(message)
                if properties.model is not None:
                    view.model = properties.model
                if properties.provider is not None:
                    view.provider = properties.provider
                if properties.diff_mode is not None:
                    view.diff_mode = properties.diff_mode
                message = replace(message, content=properties.content, tier=MessageTier.HISTORY)
            elif message.role == "assistant":
                message = replace(
                    message,
                    content=_scrub_assistant_content(message.content),
                    tier=MessageTier.HISTORY,
                )
            else:
                message = replace(message, tier=MessageTier.HISTORY)
            view.messages.append(message)
        return view

    def assemble(
        self,
        snapshot: FileSnapshot | None,
        history: HistoryView | Sequence[Message | Mapping[str, Any] | str],
        *,
        pending_tool_results: Sequence[Message | Mapping[str, Any] | str] = (),
        project_type_prompt: str | None = None,
        diff_mode: bool | None = None,
        supports_cache: bool = False,
        exemptions: ReadExemptions | None = None,
    ) -> list[Message]:
        """Return messages in tier order with blanks dropped.

        When ``diff_mode`` is None the history's ``[UseDiff]`` tag decides.
        ``supports_cache`` adds the provider cache hint to the final message
        only. Every text file matching ``exemptions`` (the assembler's own set
        when omitted) is inlined, since such files may be written unread.
        """
        view = history if isinstance(history, HistoryView) else self.prepare_history(history)
        use_diff = bool(view.diff_mode) if diff_mode is None else diff_mode

        messages: list[Message] = [
            Message(
                "system",
                self._system_prompt or prompts.render_system_prompt(diff_mode=use_diff),
                MessageTier.STATIC,
            )
        ]
        if project_type_prompt:
            messages.append(Message("system", project_type_prompt, MessageTier.PROJECT_TYPE))
        if snapshot is not None:
            messages.extend(
                Message("system", content, MessageTier.PROJECT_CONTEXT)
                for content in (
                    prompts.render_project_files(self._listed_paths(snapshot)),
                    prompts.render_manifest(self._manifest_path, snapshot.get_content(self._manifest_path)),
                    prompts.render_resource_index(
                        self._resource_index,
                        snapshot.get_content(self._resource_index),
                    ),
                )
            )
            messages.append(
                Message(
                    "system",
                    prompts.render_status_doc(self._status_doc, snapshot.get_content(self._status_doc)),
                    MessageTier.DYNAMIC,
                )
            )
            messages.append(
                Message(
                    "system",
                    prompts.render_reference_documents(self._exempt_documents(snapshot, exemptions)),
                    MessageTier.DYNAMIC,
                )
            )
        if use_diff:
            messages.append(Message("system", prompts.DIFF_MODE_CONSTRAINTS, MessageTier.DYNAMIC))
        messages.extend(
            replace(Message.coerce(item), tier=MessageTier.PENDING_TOOL_RESULTS) for item in pending_tool_results
        )
        if self._history_window > 0:
            messages.extend(view.messages[-self._history_window :])

        assembled = [message for message in messages if not message.is_blank()]
        if supports_cache and assembled:
            last = assembled[-1]
            assembled[-1] = replace(last, provider_options={**(last.provider_options or {}), **ANTHROPIC_CACHE_OPTIONS})
        LOGGER.debug(
            "Assembled %d messages (diff_mode=%s, cache=%s)",
            len(assembled),
            use_diff,
            supports_cache,
        )
        return assembled

    def _exempt_documents(
        self,
        snapshot: FileSnapshot,
        exemptions: ReadExemptions | None = None,
    ) -> list[tuple[str, str]]:
        """Text files that skip read-before-write and are not inlined by another tier."""
        patterns = exemptions if exemptions is not None else self._exemptions
        inlined = {self._manifest_path, self._resource_index, self._status_doc}
        documents: list[tuple[str, str]] = []
        for path in snapshot.file_paths():
            if path in inlined or not patterns.matches(path):
                continue
            content = snapshot.get_content(path)
            if content is not None:
                documents.append((path, content))
        return documents

    def _listed_paths(self, snapshot: FileSnapshot) -> list[str]:
        return [
            path
            for path in snapshot.file_paths()
            if not any(fnmatchcase(path, pattern) for pattern in self._IGNORE_PATTERNS)
        ]
