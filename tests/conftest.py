from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from turncore.snapshot import FileSnapshot  # noqa: E402
from turncore.state import OrchestrationState  # noqa: E402


@pytest.fixture()
def snapshot() -> FileSnapshot:
    """Small project snapshot keyed the way the host supplies it."""

    return FileSnapshot(
        {
            "/home/project/src": {"type": "folder"},
            "/home/project/src/app.ts": {"type": "file", "content": "const a = 1;", "isBinary": False},
            "/home/project/src/util.ts": {
                "type": "file",
                "content": "export function add(a: number, b: number) {\n  return a + b;\n}\n",
                "isBinary": False,
            },
            "/home/project/src/empty.ts": {"type": "file", "content": "", "isBinary": False},
            "/home/project/src/assets.json": {"type": "file", "content": '{"images": {}}', "isBinary": False},
            "/home/project/PROJECT/notes.md": {"type": "file", "content": "# Notes\n", "isBinary": False},
            "/home/project/PROJECT.md": {"type": "file", "content": "# Game\nStatus: prototype\n", "isBinary": False},
            "/home/project/README.md": {"type": "file", "content": "Use &lt;App /&gt; here.\n", "isBinary": False},
            "/home/project/package.json": {"type": "file", "content": '{"name": "game"}', "isBinary": False},
            "/home/project/public/logo.png": {"type": "file", "content": "", "isBinary": True},
            "/home/project/node_modules/react/index.js": {"type": "file", "content": "x", "isBinary": False},
        }
    )


@pytest.fixture()
def state() -> OrchestrationState:
    return OrchestrationState()
