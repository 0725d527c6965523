"""
Streaming infrastructure.

This module provides:
- SSE framing of StreamEvents with deterministic JSON payloads
- SSEEncoder, which guarantees exactly one terminal frame per stream
- EventChannel, a bounded queue between an event producer and a consumer
- BufferingAdapter, which passes events through while accumulating a result
- Client-side helpers for reading frames back
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from .types import CompletionResult, StreamEvent, StreamEventType, ToolCall, Usage

logger = logging.getLogger("copilot_runtime.streaming")

STREAM_ENDED_WITHOUT_TERMINAL = "Stream ended without a terminal event"


def dumps_payload(data: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def format_sse_event(name: str, data: Any) -> str:
    """
    Format one Server-Sent Event frame.

    Strings are sent as-is (one ``data:`` line per line of text); anything
    else is serialized as deterministic JSON.
    """
    if isinstance(data, str):
        body = "\n".join(f"data: {line}" for line in data.split("\n"))
    else:
        body = f"data: {dumps_payload(data)}"
    return f"event: {name}\n{body}\n\n"


def sse_headers() -> dict[str, str]:
    """HTTP response headers for an SSE stream."""
    return {
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


class SSEEncoder:
    """
    Encodes StreamEvents as SSE frames.

    Example:
        ```python
        encoder = SSEEncoder()
        async for frame in encoder.transform(loop.stream(messages)):
            await response.write(frame.encode())
        ```
    """

    def encode(self, event: StreamEvent) -> str:
        return format_sse_event(event.type.value, event.payload())

    async def transform(self, events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
        """
        Encode a whole stream.

        Frames keep the order of the events. The output always closes with
        exactly one ``done`` or ``error`` frame: events after the first
        terminal one are dropped, and an ``error`` frame is synthesized when
        the source ends (or fails) without one.
        """
        iterator = events.__aiter__()
        terminal_sent = False
        try:
            async for event in iterator:
                yield self.encode(event)
                if event.is_terminal:
                    terminal_sent = True
                    break
        except Exception as exc:
            logger.exception("Event source failed while encoding")
            yield self.encode(StreamEvent.error(f"{type(exc).__name__}: {exc}", status=500))
            return
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        if not terminal_sent:
            yield self.encode(StreamEvent.error(STREAM_ENDED_WITHOUT_TERMINAL, status=500))


class EventChannel:
    """
    Bounded channel between one producer and one consumer.

    ``send`` waits while the channel is full, so a slow consumer slows the
    producer instead of losing events. ``close`` ends iteration once the
    buffered events are drained.

    Example:
        ```python
        channel = EventChannel(maxsize=64)

        async def produce():
            try:
                await channel.send(event)
            finally:
                channel.close()

        async for event in channel:
            ...
        ```
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot send on a closed channel")
        await self._queue.put(event)

    def close(self) -> None:
        """Stop the channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # The consumer sees the closed flag once it drains the buffer
            pass

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class BufferingAdapter:
    """
    Passes events through while accumulating them into a CompletionResult.

    Text, thinking and tool calls are rebuilt from the incremental events, so
    the adapter works both on provider streams and on agent loop streams.
    """

    def __init__(self) -> None:
        self.close()

    def emit(self, event: StreamEvent) -> None:
        if event.type is StreamEventType.TEXT_DELTA:
            self._content.append(event.data)
        elif event.type is StreamEventType.THINKING:
            self._reasoning.append(event.data)
        elif event.type is StreamEventType.TOOL_CALL_START:
            self._partial[event.data.index] = {"id": event.data.id, "name": event.data.name or "", "arguments": ""}
        elif event.type is StreamEventType.TOOL_CALL_DELTA:
            partial = self._partial.setdefault(
                event.data.index, {"id": event.data.id, "name": event.data.name or "", "arguments": ""}
            )
            partial["arguments"] += event.data.arguments_delta
        elif event.type is StreamEventType.TOOL_CALL_END:
            self._tool_calls.append(event.data)
        elif event.type is StreamEventType.USAGE:
            self._usage = event.data
        elif event.type is StreamEventType.DONE:
            self._done = event.data if isinstance(event.data, CompletionResult) else None
        elif event.type is StreamEventType.ERROR:
            data = event.data or {}
            self._status = data.get("status", 500)
            self._error = data.get("message", "Unknown error")

    async def wrap(self, stream: AsyncIterable[StreamEvent]) -> AsyncIterator[StreamEvent]:
        async for event in stream:
            self.emit(event)
            yield event

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def tool_calls(self) -> list[ToolCall]:
        """Completed tool calls, in the order the stream declared them."""
        return list(self._tool_calls)

    @property
    def has_partial_tool_calls(self) -> bool:
        return len(self._partial) > len(self._tool_calls)

    def get_result(self) -> CompletionResult:
        done = self._done
        content = self.content or (done.content if done else None)
        tool_calls = self.tool_calls or (done.tool_calls if done else None)
        return CompletionResult(
            content=content or None,
            tool_calls=tool_calls or None,
            usage=self._usage or (done.usage if done else None),
            reasoning="".join(self._reasoning) or (done.reasoning if done else None),
            model=done.model if done else None,
            finish_reason=done.finish_reason if done else None,
            status=self._status,
            error=self._error,
        )

    def close(self) -> None:
        """Reset all buffers."""
        self._content: list[str] = []
        self._reasoning: list[str] = []
        self._partial: dict[int, dict[str, Any]] = {}
        self._tool_calls: list[ToolCall] = []
        self._usage: Usage | None = None
        self._done: CompletionResult | None = None
        self._status = 200
        self._error: str | None = None


async def collect_stream(stream: AsyncIterable[StreamEvent]) -> CompletionResult:
    """Consume a stream and return the accumulated result."""
    adapter = BufferingAdapter()
    async for _ in adapter.wrap(stream):
        pass
    return adapter.get_result()


async def stream_to_string(stream: AsyncIterable[StreamEvent]) -> str:
    """Consume a stream and return only its text."""
    parts = []
    async for event in stream:
        if event.type is StreamEventType.TEXT_DELTA:
            parts.append(event.data)
    return "".join(parts)


def parse_sse_frames(text: str) -> list[tuple[str, Any]]:
    """
    Parse SSE text back into ``(event_name, data)`` pairs.

    JSON data is decoded; anything else is returned as a string. Frames
    without an ``event:`` line get the SSE default name ``message``.
    """
    frames: list[tuple[str, Any]] = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        if not block.strip():
            continue
        name = "message"
        data_lines: list[str] = []
        for line in block.split("\n"):
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                name = value
            elif field == "data":
                data_lines.append(value)

        raw = "\n".join(data_lines)
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError:
            data = raw
        frames.append((name, data))
    return frames


__all__ = [
    "format_sse_event",
    "dumps_payload",
    "sse_headers",
    "SSEEncoder",
    "EventChannel",
    "BufferingAdapter",
    "collect_stream",
    "stream_to_string",
    "parse_sse_frames",
    "STREAM_ENDED_WITHOUT_TERMINAL",
]
