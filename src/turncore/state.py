"""Per-turn orchestration state and the read-before-write invariant."""

from __future__ import annotations

import fnmatch
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from .snapshot import FileSnapshot, normalise_path

__all__ = [
    "DEFAULT_READ_EXEMPTIONS",
    "OrchestrationState",
    "ReadExemptions",
    "StateView",
]

# Status docs and the resource index are always pre-injected into context.
DEFAULT_READ_EXEMPTIONS: tuple[str, ...] = ("PROJECT/*.md", "src/assets.json")


@dataclass(frozen=True, slots=True)
class ReadExemptions:
    """Glob patterns for paths that never need an explicit read."""

    patterns: tuple[str, ...] = DEFAULT_READ_EXEMPTIONS

    @classmethod
    def from_patterns(cls, patterns: Iterable[str] | None) -> "ReadExemptions":
        if patterns is None:
            return cls()
        cleaned = tuple(item.strip() for item in patterns if item and item.strip())
        return cls(patterns=cleaned)

    def matches(self, path: str) -> bool:
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.patterns)


@dataclass(frozen=True, slots=True)
class StateView:
    """Frozen copy of the read/written sets at a point in time."""

    read: frozenset[str]
    written: frozenset[str]


class OrchestrationState:
    """Tracks which paths were surfaced to and mutated by the model this turn.

    A fresh instance is created at turn start and discarded at turn end, so a
    read recorded in a previous turn never satisfies this turn's precondition.
    Every accessor takes the instance lock; a host that runs tool calls in
    parallel still observes the sets consistently.
    """

    def __init__(
        self,
        *,
        exemptions: ReadExemptions | None = None,
        work_dir: str | None = None,
    ) -> None:
        self._exemptions = exemptions or ReadExemptions()
        self._work_dir = work_dir
        self._read: set[str] = set()
        self._written: set[str] = set()
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Lock held by tools while they validate and record side effects."""
        return self._lock

    @property
    def exemptions(self) -> ReadExemptions:
        return self._exemptions

    @property
    def read_set(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._read)

    @property
    def written_set(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._written)

    def _key(self, path: str) -> str:
        if self._work_dir is None:
            return normalise_path(path)
        return normalise_path(path, self._work_dir)

    def needs_read(self, snapshot: FileSnapshot | None, path: str) -> bool:
        """Return True when ``path`` exists with content and is not exempt."""
        if snapshot is None:
            return False
        key = self._key(path)
        if self._exemptions.matches(key):
            return False
        return snapshot.exists(key)

    def has_read(self, path: str) -> bool:
        with self._lock:
            return self._key(path) in self._read

    def record_read(self, path: str) -> bool:
        """Mark ``path`` as surfaced to the model; returns False when already recorded."""
        key = self._key(path)
        with self._lock:
            if key in self._read:
                return False
            self._read.add(key)
            return True

    def record_write(self, path: str) -> None:
        with self._lock:
            self._written.add(self._key(path))

    def was_written(self, path: str) -> bool:
        with self._lock:
            return self._key(path) in self._written

    def snapshot(self) -> StateView:
        with self._lock:
            return StateView(read=frozenset(self._read), written=frozenset(self._written))
