from __future__ import annotations

from typing import Any

import pytest

from turncore.snapshot import FileSnapshot
from turncore.state import OrchestrationState
from turncore.structured import CreateIntent, PatchIntent
from turncore.tools import ToolArgumentsError, ToolResult, ToolSpec
from turncore.tools.matcher import ExactMatcher, NormalisingMatcher, normalise_content
from turncore.tools.mutation import create_file_action_tool, create_modify_action_tool


def _call(spec: ToolSpec, arguments: Any) -> ToolResult:
    result = spec.handler(spec.validate(arguments))
    assert isinstance(result, ToolResult)
    return result


def test_patch_without_read_returns_current_content(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    modify = create_modify_action_tool(snapshot, state)

    result = _call(modify, {"path": "src/app.ts", "items": [{"before": "const a = 1;", "after": "const a = 2;"}]})

    assert result.complete is False
    assert result.existing_file == {"path": "src/app.ts", "content": "const a = 1;"}
    assert "src/app.ts" in result.system_message
    assert state.has_read("src/app.ts")
    assert state.written_set == frozenset()
    assert result.to_dict()["existing_file"]["content"] == "const a = 1;"


def test_patch_after_read_succeeds_and_marks_written(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/app.ts")
    modify = create_modify_action_tool(snapshot, state)

    result = _call(modify, {"path": "src/app.ts", "items": [{"before": "const a = 1;", "after": "const a = 2;"}]})

    assert result.complete is True
    assert state.written_set == frozenset({"src/app.ts"})
    assert result.payload["modifications_count"] == 1
    assert isinstance(result.intent, PatchIntent)
    assert result.intent.to_dict()["modifications"] == [{"before": "const a = 1;", "after": "const a = 2;"}]


def test_patch_after_rewrite_directs_to_create(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/app.ts")
    create = create_file_action_tool(snapshot, state)
    modify = create_modify_action_tool(snapshot, state)

    created = _call(create, {"path": "src/app.ts", "content": "const a = 3;"})
    patched = _call(modify, {"path": "src/app.ts", "items": [{"before": "const a = 1;", "after": "const a = 4;"}]})

    assert created.complete is True
    assert patched.complete is False
    assert "submit_file_action" in patched.system_message
    assert patched.intent is None


def test_rejection_after_rewrite_ignores_edit_validity(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    create = create_file_action_tool(snapshot, state)
    modify = create_modify_action_tool(snapshot, state)
    _call(create, {"path": "src/brand-new.ts", "content": "let b = 1;"})

    result = _call(modify, {"path": "src/brand-new.ts", "items": [{"before": "nothing like this", "after": "x"}]})

    assert result.complete is False
    assert "invalid_modifications" not in result.payload


def test_create_on_unread_existing_file_is_rejected_once(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    create = create_file_action_tool(snapshot, state)

    first = _call(create, {"path": "/home/project/src/util.ts", "content": "export {};\n"})
    second = _call(create, {"path": "src/util.ts", "content": "export {};\n"})

    assert first.complete is False
    assert first.existing_file is not None
    assert first.existing_file["content"].startswith("export function add")
    assert second.complete is True
    assert second.payload == {"path": "src/util.ts", "content_size": 11, "type": "file"}
    assert second.intent == CreateIntent(path="src/util.ts", content="export {};\n")


def test_create_new_and_exempt_files_without_read(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    create = create_file_action_tool(snapshot, state)

    assert _call(create, {"path": "src/new.ts", "content": "x"}).complete is True
    assert _call(create, {"path": "src/assets.json", "content": "{}"}).complete is True
    assert _call(create, {"path": "PROJECT/notes.md", "content": "# Notes"}).complete is True
    assert state.read_set == frozenset()


def test_mismatched_pairs_are_all_reported(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/util.ts")
    modify = create_modify_action_tool(snapshot, state)
    long_before = "y" * 150

    result = _call(
        modify,
        {
            "path": "src/util.ts",
            "items": [
                {"before": "return a + b;", "after": "return a - b;"},
                {"before": "return a * b;", "after": "return 0;"},
                {"before": long_before, "after": "z"},
            ],
        },
    )

    assert result.complete is False
    invalid = result.payload["invalid_modifications"]
    assert [entry["index"] for entry in invalid] == [2, 3]
    assert invalid[1]["preview"] == "y" * 100 + "..."
    assert "Modification #2" in result.system_message
    assert not state.was_written("src/util.ts")


@pytest.mark.parametrize("path", ["src/ghost.ts", "src/empty.ts", "public/logo.png"])
def test_patch_on_file_without_text_is_rejected(
    snapshot: FileSnapshot, state: OrchestrationState, path: str
) -> None:
    modify = create_modify_action_tool(snapshot, state)

    result = _call(modify, {"path": path, "items": [{"before": "nope", "after": "yes"}]})
    retry = _call(modify, {"path": path, "items": [{"before": "still nope", "after": "yes"}]})

    assert result.complete is False
    assert result.intent is None
    assert [entry["index"] for entry in result.payload["invalid_modifications"]] == [1]
    assert "submit_file_action" in result.system_message
    assert not state.was_written(path)
    assert "already modified" not in retry.system_message
    assert retry.payload["invalid_modifications"][0]["preview"] == "still nope"


def test_normalised_before_matches_code_files_only(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/util.ts")
    state.record_read("PROJECT.md")
    modify = create_modify_action_tool(snapshot, state)

    code = _call(
        modify,
        {"path": "src/util.ts", "items": [{"before": "```ts\n  return a + b;\n```", "after": "  return b + a;"}]},
    )
    markdown = _call(
        modify,
        {"path": "PROJECT.md", "items": [{"before": "```\nStatus: prototype\n```", "after": "Status: beta"}]},
    )

    assert code.complete is True
    assert markdown.complete is False
    assert len(markdown.payload["invalid_modifications"]) == 1


def test_exact_matcher_can_replace_the_default(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/util.ts")
    modify = create_modify_action_tool(snapshot, state, matcher=ExactMatcher())

    result = _call(
        modify,
        {"path": "src/util.ts", "items": [{"before": "```ts\n  return a + b;\n```", "after": "  return b + a;"}]},
    )

    assert result.complete is False


def test_no_op_patch_is_rejected(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    state.record_read("src/app.ts")
    modify = create_modify_action_tool(snapshot, state)

    result = _call(modify, {"path": "src/app.ts", "items": [{"before": "const a = 1;", "after": "const a = 1;"}]})

    assert result.complete is False
    assert "No changes" in result.system_message
    assert state.written_set == frozenset()


def test_patch_schema_rejects_empty_items_and_unknown_keys(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    modify = create_modify_action_tool(snapshot, state)

    with pytest.raises(ToolArgumentsError):
        modify.validate({"path": "src/app.ts", "items": []})
    with pytest.raises(ToolArgumentsError):
        modify.validate({"path": "src/app.ts", "items": [{"before": "a", "after": "b", "extra": 1}]})
    with pytest.raises(ToolArgumentsError):
        modify.validate('{"path": "src/app.ts"}')
    assert state.read_set == frozenset()


def test_tool_definitions_are_closed_schemas(snapshot: FileSnapshot, state: OrchestrationState) -> None:
    definition = create_modify_action_tool(snapshot, state).to_definition()

    assert definition["name"] == "submit_modify_action"
    assert definition["parameters"]["additionalProperties"] is False
    assert set(definition["parameters"]["required"]) == {"path", "items"}


def test_normalise_content_unwraps_fences_and_entities() -> None:
    assert normalise_content("```js\nif (a &lt; b) {}\n```") == "if (a < b) {}"
    assert normalise_content("<![CDATA[\nx &amp;&amp; y\n]]>") == "x && y"
    assert NormalisingMatcher().matches("a < b", "a &lt; b", path="src/x.ts") is True
    assert NormalisingMatcher().matches("a < b", "a &lt; b", path="docs/x.md") is False
