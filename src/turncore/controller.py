"""Drive one streamed turn: model resolution, context, tools and observation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, List, Optional

from . import prompts
from .config import Settings
from .context_builder import ContextAssembler, Message
from .models.completion import CompletionClient, CompletionRequest, StreamPart, UsageTotals, await_cancellable
from .models.resolver import ModelResolver, ResolvedModel
from .snapshot import FileSnapshot
from .state import OrchestrationState
from .structured import InvalidArguments, MutationIntent, ToolCall, ToolCallFault, UnknownTool
from .telemetry import emit_event
from .tools import (
    RepairTracker,
    TextMatcher,
    ToolArgumentsError,
    ToolRegistry,
    ToolResult,
    UnknownToolError,
    create_core_tools,
    serialise_tool_output,
)

__all__ = [
    "ResponseSegmentLimitError",
    "StepResult",
    "StopCondition",
    "StreamSession",
    "StreamingController",
    "TurnResult",
    "any_of",
    "has_tool_call",
    "step_count_is",
]

LOGGER = logging.getLogger(__name__)


class ResponseSegmentLimitError(RuntimeError):
    """Raised when a truncated response would need more continuation segments than allowed."""


@dataclass(slots=True)
class StepResult:
    """What a single model step produced."""

    index: int
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[dict[str, Any]] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: UsageTotals = field(default_factory=UsageTotals)
    error: Any = None


StopCondition = Callable[[Sequence[StepResult]], bool]


def step_count_is(count: int) -> StopCondition:
    """Stop once ``count`` steps have run."""

    def _condition(steps: Sequence[StepResult]) -> bool:
        return len(steps) >= count

    return _condition


def has_tool_call(name: str) -> StopCondition:
    """Stop after a step that called ``name``."""

    def _condition(steps: Sequence[StepResult]) -> bool:
        return bool(steps) and any(call.name == name for call in steps[-1].tool_calls)

    return _condition


def any_of(*conditions: StopCondition) -> StopCondition:
    def _condition(steps: Sequence[StepResult]) -> bool:
        return any(condition(steps) for condition in conditions)

    return _condition


@dataclass(slots=True)
class TurnResult:
    """Accumulated outcome of a finished, failed or cancelled turn."""

    model: str
    provider: str
    steps: List[StepResult] = field(default_factory=list)
    usage: UsageTotals = field(default_factory=UsageTotals)
    intents: List[MutationIntent] = field(default_factory=list)
    repairs: int = 0
    cancelled: bool = False

    @property
    def text(self) -> str:
        return "".join(step.text for step in self.steps)

    @property
    def finish_reason(self) -> str | None:
        return self.steps[-1].finish_reason if self.steps else None


@dataclass(frozen=True, slots=True)
class _StreamEnd:
    error: BaseException | None = None


class StreamSession:
    """A running turn.

    Every ``full_stream()`` call gets its own queue pre-filled with the parts
    published so far, so late subscribers see the whole stream. The
    ``observer`` task consumes the same parts alongside the caller.
    """

    def __init__(
        self,
        *,
        client: CompletionClient,
        registry: ToolRegistry,
        resolved: ResolvedModel,
        messages: Sequence[Message],
        stop_condition: StopCondition,
        max_response_segments: int,
        cancel_event: asyncio.Event | None = None,
        state: OrchestrationState | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self._resolved = resolved
        self._messages: list[Message] = list(messages)
        self._stop_condition = stop_condition
        self._max_response_segments = max_response_segments
        self._cancel_event = cancel_event or asyncio.Event()
        self._cancel_requested = False
        self.state = state
        self.tracker = RepairTracker()
        self.result = TurnResult(model=resolved.descriptor.name, provider=resolved.provider.name)
        self._published: list[StreamPart | _StreamEnd] = []
        self._subscribers: list[asyncio.Queue[StreamPart | _StreamEnd]] = []
        self._task = asyncio.create_task(self._drive())
        self.observer = asyncio.create_task(self._observe())

    @property
    def resolved(self) -> ResolvedModel:
        return self._resolved

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def cancelled(self) -> bool:
        return self.result.cancelled

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Stop the turn; repeated calls are no-ops.

        Every await inside the turn races against the cancellation event, so
        setting it is enough to unwind the producer and end all streams.
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True
        LOGGER.debug("Cancellation requested")
        self._cancel_event.set()

    async def wait(self) -> TurnResult:
        """Wait for the turn to end and return its result; producer failures are re-raised."""
        await self._task
        return self.result

    async def full_stream(self) -> AsyncIterator[StreamPart]:
        queue: asyncio.Queue[StreamPart | _StreamEnd] = asyncio.Queue()
        for item in self._published:
            queue.put_nowait(item)
        self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if isinstance(item, _StreamEnd):
                    if item.error is not None:
                        raise item.error
                    return
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def _publish(self, item: StreamPart | _StreamEnd) -> None:
        self._published.append(item)
        for queue in self._subscribers:
            queue.put_nowait(item)

    async def _observe(self) -> None:
        async for part in self.full_stream():
            if part.type == "error":
                LOGGER.error("%s", part.error)
                return
        if self.result.cancelled:
            LOGGER.info("Request aborted.")

    async def _drive(self) -> None:
        error: BaseException | None = None
        try:
            await self._run_steps()
        except asyncio.CancelledError:
            self.result.cancelled = True
        except Exception as exc:
            error = exc
            raise
        finally:
            emit_event(
                "turn.finished",
                model=self.result.model,
                provider=self.result.provider,
                steps=len(self.result.steps),
                repairs=self.result.repairs,
                cancelled=self.result.cancelled,
                failed=error is not None,
                usage=self.result.usage.to_dict(),
            )
            self._publish(_StreamEnd(error))

    async def _run_steps(self) -> None:
        messages = list(self._messages)
        continuations = 0
        while True:
            if self._cancel_event.is_set():
                raise asyncio.CancelledError("cancelled by caller")
            step = await self._run_step(messages, index=len(self.result.steps))
            self.result.steps.append(step)
            self.result.usage.add(step.usage)
            if step.error is not None:
                return

            if step.finish_reason == "length" and not step.tool_calls:
                if continuations >= self._max_response_segments:
                    limit = ResponseSegmentLimitError("Cannot continue message: Maximum segments reached")
                    LOGGER.warning("%s (%d segments)", limit, continuations + 1)
                    self._publish(StreamPart.error_part(limit))
                    return
                continuations += 1
                LOGGER.info("Response truncated; continuing (segment %d)", continuations + 1)
                messages.append(Message("assistant", step.text))
                messages.append(Message("user", prompts.CONTINUE_PROMPT))
                continue

            if not step.tool_calls:
                return
            messages.extend(_step_messages(step))
            if self._stop_condition(self.result.steps):
                LOGGER.debug("Stop condition reached after %d steps", len(self.result.steps))
                return

    async def _run_step(self, messages: Sequence[Message], *, index: int) -> StepResult:
        request = CompletionRequest(
            model=self._resolved.descriptor.name,
            provider=self._resolved.provider.name,
            messages=list(messages),
            tools=self._registry.definitions(),
            max_tokens=self._resolved.max_tokens,
        )
        step = StepResult(index=index)
        text: list[str] = []
        async with contextlib.aclosing(self._client.stream(request, cancel_event=self._cancel_event)) as stream:
            while True:
                try:
                    part = await await_cancellable(_next_part(stream), self._cancel_event)
                except StopAsyncIteration:
                    break
                if part.type == "text-delta":
                    text.append(part.text)
                elif part.type == "tool-call" and part.tool_call is not None:
                    step.tool_calls.append(part.tool_call)
                elif part.type == "finish":
                    step.finish_reason = part.finish_reason
                    if part.usage is not None:
                        step.usage.add(part.usage)
                elif part.type == "error":
                    step.error = part.error
                self._publish(part)
                if step.error is not None:
                    break
        step.text = "".join(text)

        if step.error is None:
            for call in step.tool_calls:
                used, output = await self._execute(call)
                result = serialise_tool_output(output)
                step.tool_results.append({"call": used, "result": result})
                self._publish(StreamPart.tool_result(used, result))
        return step

    async def _execute(self, call: ToolCall) -> tuple[ToolCall, Any]:
        """Run ``call`` in the registry, redirecting faults to the recovery handlers."""
        fault: ToolCallFault | None = None
        try:
            spec, arguments = self._registry.prepare(call)
        except UnknownToolError:
            fault = UnknownTool(name=call.name, args=call.args)
        except ToolArgumentsError as error:
            fault = InvalidArguments(name=call.name, args=call.args, message=str(error))

        if fault is not None:
            substitute = self.tracker.repair(call, fault)
            if substitute is None:
                return call, ToolResult(
                    complete=False,
                    system_message=f"Tool call '{call.name}' could not be processed.",
                )
            self.result.repairs = self.tracker.repairs
            call = substitute
            spec, arguments = self._registry.prepare(call)

        output = await await_cancellable(spec.invoke(arguments), self._cancel_event)
        self.tracker.settle()
        if isinstance(output, ToolResult) and output.complete and output.intent is not None:
            self.result.intents.append(output.intent)
        return call, output


async def _next_part(stream: AsyncGenerator[StreamPart, None]) -> StreamPart:
    return await stream.__anext__()


def _step_messages(step: StepResult) -> list[Message]:
    """Replay a tool step as an assistant message followed by its tool results."""
    assistant: list[dict[str, Any]] = []
    if step.text:
        assistant.append({"type": "text", "text": step.text})
    assistant.extend(
        {"type": "tool-call", "toolCallId": call.id, "toolName": call.name, "args": call.args}
        for call in step.tool_calls
    )
    results = [
        {
            "type": "tool-result",
            "toolCallId": entry["call"].id,
            "toolName": entry["call"].name,
            "result": entry["result"],
        }
        for entry in step.tool_results
    ]
    return [Message("assistant", assistant), Message("tool", results)]


class StreamingController:
    """Builds and starts ``StreamSession`` objects for individual turns."""

    def __init__(
        self,
        client: CompletionClient,
        resolver: ModelResolver,
        *,
        settings: Settings | None = None,
        assembler: ContextAssembler | None = None,
        matcher: TextMatcher | None = None,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._settings = settings or Settings()
        self._assembler = assembler or ContextAssembler.from_settings(self._settings)
        self._matcher = matcher

    @property
    def settings(self) -> Settings:
        return self._settings

    def new_state(self) -> OrchestrationState:
        return OrchestrationState(
            exemptions=self._settings.exemptions(),
            work_dir=self._settings.project.work_dir,
        )

    def build_stop_condition(
        self,
        *,
        max_steps: int | None = None,
        terminal_tools: Iterable[str] | None = None,
    ) -> StopCondition:
        conditions: list[StopCondition] = [step_count_is(max_steps or self._settings.session.max_steps)]
        tools = self._settings.session.terminal_tools if terminal_tools is None else terminal_tools
        conditions.extend(has_tool_call(name) for name in tools)
        return any_of(*conditions)

    async def stream_turn(
        self,
        history: Sequence[Message | Mapping[str, Any] | str],
        *,
        snapshot: FileSnapshot | None = None,
        host_tools: ToolRegistry | None = None,
        pending_tool_results: Sequence[Message | Mapping[str, Any] | str] = (),
        project_type_prompt: str | None = None,
        cancel_event: asyncio.Event | None = None,
        state: OrchestrationState | None = None,
        max_steps: int | None = None,
        terminal_tools: Iterable[str] | None = None,
    ) -> StreamSession:
        """Resolve the model, assemble context and start streaming.

        Raises ``ModelResolutionError`` when the provider offers no model at
        all; every later failure is reported through the session.
        """
        cancel_event = cancel_event or asyncio.Event()
        view = self._assembler.prepare_history(history)
        resolved = await self._resolver.resolve(view.model, view.provider, cancel_event=cancel_event)
        diff_mode = view.diff_mode if view.diff_mode is not None else self._settings.context.diff_mode
        LOGGER.info(
            "Starting turn with model %s on %s (diff mode: %s, max tokens: %d)",
            resolved.descriptor.name,
            resolved.provider.name,
            diff_mode,
            resolved.max_tokens,
        )

        turn_state = state or self.new_state()
        messages = self._assembler.assemble(
            snapshot,
            view,
            pending_tool_results=pending_tool_results,
            project_type_prompt=project_type_prompt,
            diff_mode=diff_mode,
            supports_cache=resolved.supports_prompt_cache,
            exemptions=turn_state.exemptions,
        )
        registry = create_core_tools(snapshot, turn_state, host_tools=host_tools, matcher=self._matcher)
        return StreamSession(
            client=self._client,
            registry=registry,
            resolved=resolved,
            messages=messages,
            stop_condition=self.build_stop_condition(max_steps=max_steps, terminal_tools=terminal_tools),
            max_response_segments=self._settings.session.max_response_segments,
            cancel_event=cancel_event,
            state=turn_state,
        )
