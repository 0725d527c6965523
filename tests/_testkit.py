"""
Scripted provider, event factories and tools shared by the test suite.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from copilot_runtime.providers.base import ChatRequest
from copilot_runtime.streaming import collect_stream
from copilot_runtime.tools.base import Tool
from copilot_runtime.types import (
    CompletionResult,
    Message,
    Role,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolCallDelta,
    Usage,
)

# A turn is a list of events; callables in it run as side effects when reached
ScriptItem = StreamEvent | Callable[[], Any]

# =============================================================================
# Event Factories
# =============================================================================


def make_usage(input_tokens: int = 10, output_tokens: int = 20) -> Usage:
    return Usage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens)


def make_tool_call(
    id: str = "call_test123",
    name: str = "get_weather",
    arguments: str = '{"city": "Paris"}',
) -> ToolCall:
    return ToolCall(id=id, name=name, arguments=arguments)


def text_turn(text: str, *, chunks: int = 2, usage: Usage | None = None) -> list[ScriptItem]:
    """Events of a turn that only produces text."""
    size = max(1, len(text) // chunks)
    pieces = [text[i : i + size] for i in range(0, len(text), size)] or [""]
    events: list[ScriptItem] = [StreamEvent(type=StreamEventType.TEXT_DELTA, data=p) for p in pieces if p]
    usage = usage or make_usage()
    events.append(StreamEvent(type=StreamEventType.USAGE, data=usage))
    events.append(
        StreamEvent(
            type=StreamEventType.DONE,
            data=CompletionResult(content=text, usage=usage, finish_reason="stop"),
        )
    )
    return events


def tool_turn(calls: Sequence[ToolCall], *, text: str | None = None, usage: Usage | None = None) -> list[ScriptItem]:
    """Events of a turn that requests tool calls (arguments streamed in two fragments)."""
    events: list[ScriptItem] = []
    if text:
        events.append(StreamEvent(type=StreamEventType.TEXT_DELTA, data=text))
    for index, call in enumerate(calls):
        events.append(
            StreamEvent(type=StreamEventType.TOOL_CALL_START, data=ToolCallDelta(id=call.id, index=index, name=call.name))
        )
        half = len(call.arguments) // 2
        for fragment in (call.arguments[:half], call.arguments[half:]):
            if fragment:
                events.append(
                    StreamEvent(
                        type=StreamEventType.TOOL_CALL_DELTA,
                        data=ToolCallDelta(id=call.id, index=index, arguments_delta=fragment),
                    )
                )
    for call in calls:
        events.append(StreamEvent(type=StreamEventType.TOOL_CALL_END, data=call))
    usage = usage or make_usage()
    events.append(StreamEvent(type=StreamEventType.USAGE, data=usage))
    events.append(
        StreamEvent(
            type=StreamEventType.DONE,
            data=CompletionResult(content=text, tool_calls=list(calls), usage=usage, finish_reason="tool_calls"),
        )
    )
    return events


def error_turn(status: int = 500, message: str = "Internal server error", *, text: str | None = None) -> list[ScriptItem]:
    events: list[ScriptItem] = []
    if text:
        events.append(StreamEvent(type=StreamEventType.TEXT_DELTA, data=text))
    events.append(StreamEvent.error(message, status=status, provider="scripted"))
    return events


# =============================================================================
# Scripted Provider
# =============================================================================


class ScriptedProvider:
    """
    Provider that replays one scripted turn per call.

    Requests are recorded so tests can inspect what the loop sent. The last
    turn repeats when the script runs out.
    """

    name = "scripted"

    def __init__(self, turns: Sequence[Sequence[ScriptItem]], model: str = "scripted-model") -> None:
        self._turns = [list(t) for t in turns]
        self._model = model
        self.requests: list[ChatRequest] = []
        self.sent_messages: list[list[Message]] = []

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def _next_turn(self, request: ChatRequest) -> list[ScriptItem]:
        self.requests.append(request)
        self.sent_messages.append(list(request.messages))
        return self._turns[min(len(self.requests) - 1, len(self._turns) - 1)]

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        turn = self._next_turn(request)
        token = request.token
        for item in turn:
            if token.is_cancelled:
                return
            if callable(item):
                result = item()
                if asyncio.iscoroutine(result):
                    await result
                continue
            await asyncio.sleep(0)
            yield item

    async def complete(self, request: ChatRequest) -> CompletionResult:
        async def events() -> AsyncIterator[StreamEvent]:
            for item in self._next_turn(request):
                if not callable(item):
                    yield item

        return await collect_stream(events())

    async def close(self) -> None:
        pass


# =============================================================================
# Test Tools
# =============================================================================


class CallRecorder:
    """Collects the arguments each handler was invoked with."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


def make_weather_tool(recorder: CallRecorder | None = None) -> Tool:
    async def get_weather(city: str) -> dict[str, Any]:
        if recorder is not None:
            recorder.calls.append(("get_weather", {"city": city}))
        return {"city": city, "temperature": 18, "conditions": "sunny"}

    return Tool(
        name="get_weather",
        description="Current weather for a city",
        parameters={
            "type": "object",
            "properties": {"city": {"type": "string", "description": "City name"}},
            "required": ["city"],
        },
        handler=get_weather,
    )


def make_slow_tool(delay: float = 0.05, recorder: CallRecorder | None = None, name: str = "slow_tool") -> Tool:
    async def slow(label: str = "x") -> str:
        await asyncio.sleep(delay)
        if recorder is not None:
            recorder.calls.append((name, {"label": label}))
        return f"done {label}"

    return Tool(
        name=name,
        description="A slow tool",
        parameters={"type": "object", "properties": {"label": {"type": "string"}}},
        handler=slow,
    )


def make_delete_tool(recorder: CallRecorder | None = None) -> Tool:
    def delete_file(path: str) -> str:
        if recorder is not None:
            recorder.calls.append(("delete_file", {"path": path}))
        return f"deleted {path}"

    return Tool(
        name="delete_file",
        description="Delete a file",
        parameters={
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
        handler=delete_file,
    )


def approval_sink(approvals: Any, *, approve: Sequence[str] = (), reject: dict[str, str | None] | None = None):
    """Event sink answering approval requests as soon as they are announced."""
    reject = reject or {}

    def sink(event: StreamEvent) -> None:
        if event.type is not StreamEventType.TOOL_EXECUTION or event.data["status"] != "awaiting_approval":
            return
        execution_id = event.data["id"]
        if execution_id in reject:
            approvals.reject(execution_id, reject[execution_id])
        elif execution_id in approve:
            approvals.approve(execution_id)

    return sink


def events_of(events: Sequence[StreamEvent], event_type: StreamEventType) -> list[StreamEvent]:
    return [e for e in events if e.type is event_type]


def roles(messages: Sequence[Message]) -> list[Role]:
    return [m.role for m in messages]
