"""Immutable view of the project file system supplied to each turn."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

__all__ = ["DEFAULT_WORK_DIR", "FileEntry", "FileSnapshot", "normalise_path"]

DEFAULT_WORK_DIR = "/home/project"


@dataclass(frozen=True, slots=True)
class FileEntry:
    """Single dirent captured in a snapshot."""

    kind: Literal["file", "folder"] = "file"
    content: str | None = None
    is_binary: bool = False

    @classmethod
    def coerce(cls, value: Any) -> "FileEntry":
        """Accept plain strings, mappings, or entries and return a ``FileEntry``."""
        if isinstance(value, FileEntry):
            return value
        if isinstance(value, str):
            return cls(kind="file", content=value)
        if isinstance(value, Mapping):
            kind = str(value.get("type") or value.get("kind") or "file")
            if kind not in ("file", "folder"):
                raise ValueError(f"Unsupported dirent type: {kind!r}")
            content = value.get("content")
            return cls(
                kind=kind,  # type: ignore[arg-type]
                content=None if kind == "folder" or content is None else str(content),
                is_binary=bool(value.get("isBinary", value.get("is_binary", False))),
            )
        raise TypeError(f"Cannot build a file entry from {type(value).__name__}")


def normalise_path(path: str, work_dir: str = DEFAULT_WORK_DIR) -> str:
    """Return the project-relative form of ``path``."""
    candidate = (path or "").strip().replace("\\", "/")
    prefix = work_dir.rstrip("/") + "/"
    if work_dir and candidate.startswith(prefix):
        candidate = candidate[len(prefix) :]
    while candidate.startswith("./"):
        candidate = candidate[2:]
    return candidate.lstrip("/")


class FileSnapshot(Mapping[str, FileEntry]):
    """Read-only ``path -> FileEntry`` mapping keyed by project-relative paths."""

    __slots__ = ("_entries", "_work_dir")

    def __init__(self, entries: Mapping[str, Any] | None = None, *, work_dir: str = DEFAULT_WORK_DIR) -> None:
        self._work_dir = work_dir
        normalised: dict[str, FileEntry] = {}
        for raw_path, raw_entry in (entries or {}).items():
            if raw_entry is None:
                continue
            key = normalise_path(raw_path, work_dir)
            if not key:
                continue
            normalised[key] = FileEntry.coerce(raw_entry)
        self._entries = MappingProxyType(normalised)

    @property
    def work_dir(self) -> str:
        return self._work_dir

    def __getitem__(self, path: str) -> FileEntry:
        return self._entries[normalise_path(path, self._work_dir)]

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return normalise_path(path, self._work_dir) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get_content(self, path: str) -> str | None:
        """Return text content for a file, or ``None`` for folders, binaries and absent paths."""
        entry = self._entries.get(normalise_path(path, self._work_dir))
        if entry is None or entry.kind != "file" or entry.is_binary:
            return None
        return entry.content

    def exists(self, path: str) -> bool:
        """Return True when ``path`` is a file with non-empty text content."""
        return bool(self.get_content(path))

    def file_paths(self) -> list[str]:
        """Return the sorted list of file (not folder) paths."""
        return sorted(path for path, entry in self._entries.items() if entry.kind == "file")
