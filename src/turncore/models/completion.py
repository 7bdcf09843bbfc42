"""Streaming completion contract shared by every provider integration."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator, Awaitable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypeVar

from ..context_builder import Message
from ..structured import ToolCall
from ..telemetry import json_safe

__all__ = [
    "CompletionClient",
    "CompletionRequest",
    "StreamPart",
    "StreamPartType",
    "UsageTotals",
    "await_cancellable",
]

T = TypeVar("T")

StreamPartType = Literal["text-delta", "tool-call", "tool-result", "finish", "error"]


@dataclass(slots=True)
class UsageTotals:
    """Token counts accumulated across every step of a turn."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    def add(self, other: "UsageTotals | None") -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens or (other.prompt_tokens + other.completion_tokens)
        self.cache_read_tokens += other.cache_read_tokens
        self.cache_write_tokens += other.cache_write_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "cacheRead": self.cache_read_tokens,
            "cacheWrite": self.cache_write_tokens,
        }


@dataclass(slots=True)
class StreamPart:
    """One event in a completion stream."""

    type: StreamPartType
    text: str = ""
    tool_call: Optional[ToolCall] = None
    result: Any = None
    finish_reason: Optional[str] = None
    usage: Optional[UsageTotals] = None
    error: Any = None

    @classmethod
    def text_delta(cls, text: str) -> "StreamPart":
        return cls("text-delta", text=text)

    @classmethod
    def tool_call_part(cls, call: ToolCall) -> "StreamPart":
        return cls("tool-call", tool_call=call)

    @classmethod
    def tool_result(cls, call: ToolCall, result: Any) -> "StreamPart":
        return cls("tool-result", tool_call=call, result=result)

    @classmethod
    def finish(cls, reason: str = "stop", usage: UsageTotals | None = None) -> "StreamPart":
        return cls("finish", finish_reason=reason, usage=usage)

    @classmethod
    def error_part(cls, error: Any) -> "StreamPart":
        return cls("error", error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.type == "text-delta":
            data["textDelta"] = self.text
        if self.tool_call is not None:
            data.update(
                {
                    "toolCallId": self.tool_call.id,
                    "toolName": self.tool_call.name,
                    "args": json_safe(self.tool_call.args),
                }
            )
        if self.type == "tool-result":
            data["result"] = json_safe(self.result)
        if self.type == "finish":
            data["finishReason"] = self.finish_reason
            if self.usage is not None:
                data["usage"] = self.usage.to_dict()
        if self.type == "error":
            data["error"] = str(self.error)
        return data


@dataclass(slots=True)
class CompletionRequest:
    """Provider-neutral payload for a single streamed step."""

    model: str
    provider: str
    messages: List[Message]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    max_tokens: int = 8000
    options: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_dict() for message in self.messages],
            "maxTokens": self.max_tokens,
        }
        if self.tools:
            payload["tools"] = self.tools
        payload.update(self.options)
        return payload


class CompletionClient:
    """Streams one model step as ``StreamPart`` events.

    A step ends with a ``finish`` part. Tool calls are emitted as
    ``tool-call`` parts and are not executed by the client.
    """

    def stream(
        self,
        request: CompletionRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        """Return an async generator over the parts of one step. Subclasses must implement.

        The controller closes the generator when it stops reading early.
        """
        raise NotImplementedError("Subclasses must implement stream().")


async def await_cancellable(awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    """Await ``awaitable`` unless ``cancel_event`` fires first.

    Raises ``asyncio.CancelledError`` when the event wins; the pending work
    is cancelled before returning.
    """
    if cancel_event is None:
        return await awaitable
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise asyncio.CancelledError("cancelled by caller")
    work = asyncio.ensure_future(awaitable)
    stop = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await work
        raise
    finally:
        stop.cancel()
    if work.done():
        return work.result()
    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    raise asyncio.CancelledError("cancelled by caller")
