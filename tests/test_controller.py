from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from turncore.config import Settings
from turncore.context_builder import ANTHROPIC_CACHE_OPTIONS
from turncore.controller import StreamingController, TurnResult, has_tool_call, step_count_is
from turncore.models import (
    CompletionClient,
    CompletionRequest,
    ModelDescriptor,
    ModelResolutionError,
    ModelResolver,
    ProviderSpec,
    StreamPart,
    UsageTotals,
)
from turncore.prompts import CONTINUE_PROMPT
from turncore.snapshot import FileSnapshot
from turncore.structured import PatchIntent, ToolCall
from turncore.tools import ToolRegistry, ToolSpec

PROVIDERS = [
    ProviderSpec(name="OpenAI", static_models=(ModelDescriptor(name="gpt-5", provider="OpenAI"),)),
    ProviderSpec(
        name="Anthropic",
        static_models=(ModelDescriptor(name="claude-sonnet", provider="Anthropic", max_token_allowed=64000),),
        supports_prompt_cache=True,
    ),
    ProviderSpec(name="Empty"),
]


class ScriptedClient(CompletionClient):
    """Replays one scripted list of parts per step and records every request."""

    def __init__(self, steps: list[list[StreamPart]]) -> None:
        self._steps = list(steps)
        self.requests: list[CompletionRequest] = []

    async def stream(
        self,
        request: CompletionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        self.requests.append(request)
        parts = self._steps.pop(0) if self._steps else [StreamPart.finish("stop")]
        for part in parts:
            await asyncio.sleep(0)
            yield part


class HangingClient(CompletionClient):
    async def stream(
        self,
        request: CompletionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        yield StreamPart.text_delta("partial")
        await asyncio.sleep(30)
        yield StreamPart.finish("stop")


class FailingClient(CompletionClient):
    async def stream(
        self,
        request: CompletionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        yield StreamPart.text_delta("about to fail")
        raise RuntimeError("boom")


def _controller(client: CompletionClient, **overrides: Any) -> StreamingController:
    settings = Settings.from_mapping(overrides)
    return StreamingController(client, ModelResolver.from_settings(PROVIDERS, settings), settings=settings)


def _call(call_id: str, name: str, args: Any) -> StreamPart:
    return StreamPart.tool_call_part(ToolCall(id=call_id, name=name, args=args))


def _run_turn(
    controller: StreamingController,
    history: list[Any],
    **kwargs: Any,
) -> tuple[list[StreamPart], TurnResult]:
    async def scenario() -> tuple[list[StreamPart], TurnResult]:
        session = await controller.stream_turn(history, **kwargs)
        parts = [part async for part in session.full_stream()]
        result = await session.wait()
        await session.observer
        return parts, result

    return asyncio.run(scenario())


def test_unknown_tool_is_answered_and_the_turn_continues() -> None:
    client = ScriptedClient(
        [
            [_call("call-1", "frobnicate", {"x": 1}), StreamPart.finish("tool-calls")],
            [StreamPart.text_delta("Sorry, let me use a real tool."), StreamPart.finish("stop")],
        ]
    )

    parts, result = _run_turn(_controller(client), ["do something"])

    tool_results = [part for part in parts if part.type == "tool-result"]
    assert len(tool_results) == 1
    assert tool_results[0].tool_call is not None
    assert tool_results[0].tool_call.id == "call-1"
    assert tool_results[0].result["complete"] is True
    assert "Tool 'frobnicate' is not registered" in tool_results[0].result["result"]
    assert result.repairs == 1
    assert len(client.requests) == 2
    assert client.requests[1].messages[-1].role == "tool"
    assert result.text == "Sorry, let me use a real tool."


def test_invalid_arguments_are_routed_to_the_input_handler() -> None:
    client = ScriptedClient(
        [[_call("call-1", "submit_file_action", '{"path": "src/a.ts"}'), StreamPart.finish("tool-calls")]]
    )

    parts, result = _run_turn(_controller(client), ["write a file"])

    tool_result = next(part for part in parts if part.type == "tool-result")
    assert tool_result.tool_call is not None
    assert tool_result.tool_call.name == "__system_invalidToolInputHandler"
    assert "content" in tool_result.result["result"]
    assert result.intents == []


def test_read_then_patch_in_one_step_yields_an_intent(snapshot: FileSnapshot) -> None:
    client = ScriptedClient(
        [
            [
                _call("r1", "read_files_contents", {"pathList": ["src/app.ts"]}),
                _call(
                    "m1",
                    "submit_modify_action",
                    {"path": "src/app.ts", "items": [{"before": "const a = 1;", "after": "const a = 2;"}]},
                ),
                StreamPart.finish("tool-calls"),
            ],
            [StreamPart.text_delta("Updated."), StreamPart.finish("stop")],
        ]
    )

    parts, result = _run_turn(_controller(client), ["bump a"], snapshot=snapshot)

    results = [part.result for part in parts if part.type == "tool-result"]
    assert [entry["complete"] for entry in results] == [True, True]
    assert result.intents == [
        PatchIntent(path="src/app.ts", edits=result.intents[0].edits),
    ]
    assert result.intents[0].edits[0].after == "const a = 2;"


def test_patch_without_read_returns_content_to_the_model(snapshot: FileSnapshot) -> None:
    client = ScriptedClient(
        [
            [
                _call("m1", "submit_modify_action", {"path": "src/app.ts", "items": [{"before": "a", "after": "b"}]}),
                StreamPart.finish("tool-calls"),
            ]
        ]
    )

    parts, result = _run_turn(_controller(client), ["change it"], snapshot=snapshot)

    tool_result = next(part for part in parts if part.type == "tool-result")
    assert tool_result.result["complete"] is False
    assert tool_result.result["existing_file"]["content"] == "const a = 1;"
    assert result.intents == []


def test_step_limit_stops_the_loop() -> None:
    client = ScriptedClient(
        [
            [_call("c1", "frobnicate", {}), StreamPart.finish("tool-calls")],
            [_call("c2", "frobnicate", {}), StreamPart.finish("tool-calls")],
        ]
    )

    _, result = _run_turn(_controller(client), ["loop"], max_steps=1)

    assert len(client.requests) == 1
    assert len(result.steps) == 1


def test_terminal_tool_stops_the_loop() -> None:
    host = ToolRegistry([ToolSpec(name="finish_task", description="Finish the task", handler=lambda args: {"ok": True})])
    client = ScriptedClient(
        [
            [_call("c1", "finish_task", {}), StreamPart.finish("tool-calls")],
            [StreamPart.text_delta("never requested"), StreamPart.finish("stop")],
        ]
    )

    parts, _ = _run_turn(
        _controller(client, session={"terminal_tools": ["finish_task"]}),
        ["finish"],
        host_tools=host,
    )

    assert len(client.requests) == 1
    assert next(part for part in parts if part.type == "tool-result").result == {"ok": True}


def test_stop_conditions() -> None:
    step = type("Step", (), {"tool_calls": [ToolCall(id="1", name="finish_task")]})()

    assert step_count_is(2)([step, step]) is True
    assert step_count_is(2)([step]) is False
    assert has_tool_call("finish_task")([step]) is True
    assert has_tool_call("other")([step]) is False
    assert has_tool_call("finish_task")([]) is False


def test_error_part_is_logged_and_observation_ends(caplog: pytest.LogCaptureFixture) -> None:
    client = ScriptedClient([[StreamPart.text_delta("Hi"), StreamPart.error_part("provider overloaded")]])

    with caplog.at_level(logging.ERROR, logger="turncore.controller"):
        parts, result = _run_turn(_controller(client), ["hello"])

    assert [part.type for part in parts] == ["text-delta", "error"]
    assert result.steps[-1].error == "provider overloaded"
    assert "provider overloaded" in caplog.text


def test_cancellation_is_quiet_and_idempotent(caplog: pytest.LogCaptureFixture) -> None:
    controller = _controller(HangingClient())

    async def scenario() -> tuple[list[StreamPart], TurnResult]:
        session = await controller.stream_turn(["hello"])
        received: list[StreamPart] = []
        async for part in session.full_stream():
            received.append(part)
            session.cancel()
            session.cancel()
        result = await session.wait()
        await session.observer
        return received, result

    with caplog.at_level(logging.INFO, logger="turncore.controller"):
        received, result = asyncio.run(scenario())

    assert [part.type for part in received] == ["text-delta"]
    assert result.cancelled is True
    assert "Request aborted." in caplog.text


def test_other_failures_propagate() -> None:
    controller = _controller(FailingClient())

    async def scenario() -> None:
        session = await controller.stream_turn(["hello"])
        with pytest.raises(RuntimeError, match="boom"):
            async for _ in session.full_stream():
                pass
        with pytest.raises(RuntimeError, match="boom"):
            await session.observer
        with pytest.raises(RuntimeError, match="boom"):
            await session.wait()

    asyncio.run(scenario())


def test_length_finish_continues_the_response() -> None:
    client = ScriptedClient(
        [
            [StreamPart.text_delta("Hello "), StreamPart.finish("length")],
            [StreamPart.text_delta("world"), StreamPart.finish("stop")],
        ]
    )

    _, result = _run_turn(_controller(client), ["greet"])

    assert result.text == "Hello world"
    continuation = client.requests[1].messages
    assert continuation[-2].role == "assistant"
    assert continuation[-2].content == "Hello "
    assert continuation[-1].content == CONTINUE_PROMPT


def test_segment_limit_emits_an_error_part() -> None:
    truncated = [StreamPart.text_delta("..."), StreamPart.finish("length")]
    client = ScriptedClient([truncated, truncated, truncated, truncated])

    parts, _ = _run_turn(_controller(client, session={"max_response_segments": 2}), ["write a novel"])

    assert len(client.requests) == 3
    assert parts[-1].type == "error"
    assert "Maximum segments reached" in str(parts[-1].error)


def test_usage_is_accumulated_across_steps() -> None:
    usage = UsageTotals(prompt_tokens=10, completion_tokens=5, total_tokens=15, cache_read_tokens=3)
    client = ScriptedClient(
        [
            [_call("c1", "frobnicate", {}), StreamPart.finish("tool-calls", usage)],
            [StreamPart.text_delta("done"), StreamPart.finish("stop", usage)],
        ]
    )

    _, result = _run_turn(_controller(client), ["count"])

    assert result.usage.to_dict() == {
        "promptTokens": 20,
        "completionTokens": 10,
        "totalTokens": 30,
        "cacheRead": 6,
        "cacheWrite": 0,
    }


def test_request_uses_resolved_model_cap_tools_and_cache_hint() -> None:
    client = ScriptedClient([[StreamPart.text_delta("hi"), StreamPart.finish("stop")]])

    _run_turn(_controller(client), ["[Model: claude-sonnet]\n\n[Provider: Anthropic]\n\nhello"])

    request = client.requests[0]
    names = [tool["name"] for tool in request.tools]
    assert request.model == "claude-sonnet"
    assert request.max_tokens == 64000
    assert request.messages[-1].content == "hello"
    assert request.messages[-1].provider_options == ANTHROPIC_CACHE_OPTIONS
    assert {"submit_file_action", "submit_modify_action", "submit_shell_action"} <= set(names)
    assert "__system_unknownToolHandler" in names
    assert request.to_payload()["maxTokens"] == 64000


def test_model_resolution_failure_is_fatal() -> None:
    controller = _controller(ScriptedClient([]))

    with pytest.raises(ModelResolutionError):
        asyncio.run(controller.stream_turn(["[Model: x]\n\n[Provider: Empty]\n\nhello"]))


class ClosingClient(CompletionClient):
    """Reports an error and keeps parts in reserve to show when the stream gets closed."""

    def __init__(self) -> None:
        self.closed = False

    async def stream(
        self,
        request: CompletionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        try:
            yield StreamPart.error_part("provider overloaded")
            yield StreamPart.text_delta("never read")
        finally:
            self.closed = True


def test_provider_stream_is_closed_after_an_error_part() -> None:
    client = ClosingClient()

    parts, _ = _run_turn(_controller(client), ["hello"])

    assert [part.type for part in parts] == ["error"]
    assert client.closed is True


def test_exempt_documents_written_unread_are_visible_to_the_model() -> None:
    snapshot = FileSnapshot({"PROJECT/Status.md": "SECRET-STATUS-LINE", "src/main.ts": "main();"})
    client = ScriptedClient(
        [
            [
                _call("w1", "submit_file_action", {"path": "PROJECT/Status.md", "content": "Updated status"}),
                StreamPart.finish("tool-calls"),
            ],
        ]
    )

    parts, result = _run_turn(_controller(client), ["update the status"], snapshot=snapshot)

    tool_result = next(part for part in parts if part.type == "tool-result")
    assert tool_result.result["complete"] is True
    assert len(result.intents) == 1
    assert any("SECRET-STATUS-LINE" in message.text() for message in client.requests[0].messages)
    assert not any("main();" in message.text() for message in client.requests[0].messages)
