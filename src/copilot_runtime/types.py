"""
Core types shared by providers, the tool coordinator and the agent loop.

These types give one canonical shape to messages, tool calls and streaming
events regardless of which provider produced them.
"""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from .errors import ToolArgumentError

DEFAULT_IMAGE_MIME_TYPE = "image/png"


class Role(str, Enum):
    """Message roles in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StreamEventType(str, Enum):
    """Types of events emitted during streaming."""

    # Content events
    TEXT_DELTA = "text_delta"
    THINKING = "thinking"

    # Tool calling events
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"

    # Run progress events
    ITERATION = "iteration"
    TOOL_EXECUTION = "tool_execution"

    # Metadata events
    META = "meta"
    USAGE = "usage"

    # Terminal events
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamEventType.DONE, StreamEventType.ERROR)


def strip_data_uri(data: str) -> str:
    """Return the raw base64 payload of ``data``, dropping any ``data:...,`` prefix."""
    if data.startswith("data:"):
        _, _, payload = data.partition(",")
        return payload
    return data


def to_data_uri(data: str, mime_type: str | None = None) -> str:
    """Return ``data`` as a data URI, adding the prefix only when missing."""
    if data.startswith("data:"):
        return data
    return f"data:{mime_type or DEFAULT_IMAGE_MIME_TYPE};base64,{data}"


@dataclass(frozen=True)
class Attachment:
    """Binary content sent alongside a message (images, files)."""

    type: Literal["image", "file"]
    data: str  # base64 or data URI
    mime_type: str | None = None

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    @property
    def media_type(self) -> str:
        """Declared MIME type, falling back to the one embedded in a data URI."""
        if self.mime_type:
            return self.mime_type
        if self.data.startswith("data:"):
            header = self.data[5:].split(",", 1)[0]
            declared = header.split(";", 1)[0]
            if declared:
                return declared
        return DEFAULT_IMAGE_MIME_TYPE

    def base64_payload(self) -> str:
        return strip_data_uri(self.data)

    def data_uri(self) -> str:
        return to_data_uri(self.data, self.media_type)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "data": self.data}
        if self.mime_type is not None:
            d["mime_type"] = self.mime_type
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            type=data.get("type", "image"),
            data=data["data"],
            mime_type=data.get("mime_type") or data.get("mimeType"),
        )


@dataclass(frozen=True)
class ToolCall:
    """Represents a tool/function call made by the model.

    ``id`` is provider-assigned and echoed back verbatim with the result.
    """

    id: str
    name: str
    arguments: str  # JSON string of arguments

    def parse_arguments(self) -> dict[str, Any]:
        """Parse the JSON arguments string.

        Raises:
            ToolArgumentError: If the text is not a JSON object.
        """
        if not self.arguments or not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as exc:
            raise ToolArgumentError(
                f"Invalid JSON arguments: {exc.msg}",
                tool_name=self.name,
                raw_arguments=self.arguments,
                cause=exc,
            ) from exc
        if not isinstance(parsed, dict):
            raise ToolArgumentError(
                f"Arguments must be a JSON object, got {type(parsed).__name__}",
                tool_name=self.name,
                raw_arguments=self.arguments,
            )
        return parsed

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class ToolCallDelta:
    """Partial tool call data during streaming."""

    id: str
    index: int
    name: str | None = None
    arguments_delta: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "index": self.index}
        if self.name is not None:
            d["name"] = self.name
        if self.arguments_delta:
            d["arguments_delta"] = self.arguments_delta
        return d


@dataclass(frozen=True)
class Message:
    """A message in a conversation. Immutable once created."""

    role: Role
    content: str | None = None
    name: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None  # For tool response messages
    attachments: tuple[Attachment, ...] | None = None
    is_error: bool = False  # Tool result describes a failed execution

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.attachments is not None and not isinstance(self.attachments, tuple):
            object.__setattr__(self, "attachments", tuple(self.attachments))

    @property
    def has_image_attachments(self) -> bool:
        return any(a.is_image for a in self.attachments or ())

    @property
    def image_attachments(self) -> list[Attachment]:
        return [a for a in self.attachments or () if a.is_image]

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-compatible dictionary format."""
        d: dict[str, Any] = {"role": self.role.value}

        if self.content is not None:
            d["content"] = self.content
        if self.name is not None:
            d["name"] = self.name
        if self.tool_calls:
            d["tool_calls"] = [
                {"id": tc.id, "type": "function", "function": {"name": tc.name, "arguments": tc.arguments}}
                for tc in self.tool_calls
            ]
        if self.tool_call_id is not None:
            d["tool_call_id"] = self.tool_call_id
        if self.attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        if self.is_error:
            d["is_error"] = True

        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Create a Message from a dictionary."""
        tool_calls = None
        if data.get("tool_calls"):
            tool_calls = tuple(
                ToolCall(id=tc["id"], name=tc["function"]["name"], arguments=tc["function"].get("arguments") or "")
                for tc in data["tool_calls"]
            )

        attachments = None
        if data.get("attachments"):
            attachments = tuple(Attachment.from_dict(a) for a in data["attachments"])

        return cls(
            role=Role(data["role"]),
            content=data.get("content"),
            name=data.get("name"),
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
            attachments=attachments,
            is_error=bool(data.get("is_error")),
        )

    @classmethod
    def user(cls, content: str, attachments: Sequence[Attachment] | None = None) -> Message:
        """Create a user message."""
        return cls(role=Role.USER, content=content, attachments=tuple(attachments) if attachments else None)

    @classmethod
    def assistant(cls, content: str | None = None, tool_calls: Sequence[ToolCall] | None = None) -> Message:
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls) if tool_calls else None)

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def tool_result(
        cls, tool_call_id: str, content: str, name: str | None = None, *, is_error: bool = False
    ) -> Message:
        """Create a tool result message."""
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name, is_error=is_error)


@dataclass
class Usage:
    """Token usage statistics."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Usage:
        """Create Usage from a dictionary."""
        return cls(
            input_tokens=data.get("input_tokens", 0),
            output_tokens=data.get("output_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
        )


def to_jsonable(value: Any) -> Any:
    """Convert event payloads into plain JSON-compatible structures."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return str(value)


@dataclass
class StreamEvent:
    """
    A unified streaming event.

    Event types and their data:
    - TEXT_DELTA: str (the text fragment)
    - THINKING: str (reasoning/thinking content)
    - TOOL_CALL_START: ToolCallDelta (id, index and name)
    - TOOL_CALL_DELTA: ToolCallDelta (argument fragment)
    - TOOL_CALL_END: ToolCall (complete tool call)
    - ITERATION: dict (iteration number and cap)
    - TOOL_EXECUTION: dict (ToolExecution snapshot)
    - META: dict (turn start with run id, iteration, provider and model)
    - USAGE: Usage (token counts)
    - DONE: CompletionResult from providers, RunResult from the agent loop
    - ERROR: dict (error info with status and message)
    """

    type: StreamEventType
    data: Any = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type.is_terminal

    def payload(self) -> Any:
        """JSON-compatible frame payload for this event."""
        if self.type in (StreamEventType.TEXT_DELTA, StreamEventType.THINKING):
            return {"text": self.data if isinstance(self.data, str) else str(self.data)}
        if self.data is None:
            return {}
        return to_jsonable(self.data)

    def to_sse(self) -> str:
        """Format as a Server-Sent Event string."""
        from .streaming import format_sse_event

        return format_sse_event(self.type.value, self.payload())

    @classmethod
    def error(cls, message: str, *, status: int = 500, **extra: Any) -> StreamEvent:
        return cls(type=StreamEventType.ERROR, data={"status": status, "message": message, **extra})


@dataclass
class CompletionResult:
    """
    Result of one provider turn.

    This unified result type works for both streaming and non-streaming completions.
    """

    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    usage: Usage | None = None
    reasoning: str | None = None

    # Request metadata
    model: str | None = None
    finish_reason: str | None = None

    # Status tracking
    status: int = 200
    error: str | None = None

    # Original response for debugging
    raw_response: Any | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        """Check if the request was successful."""
        return self.status == 200 and self.error is None

    @property
    def has_tool_calls(self) -> bool:
        """Check if the response contains tool calls."""
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """Convert this result to an assistant message."""
        return Message.assistant(content=self.content, tool_calls=self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in (self.tool_calls or [])],
            "usage": self.usage.to_dict() if self.usage else None,
            "reasoning": self.reasoning,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "status": self.status,
            "error": self.error,
        }


MessageInput = str | dict[str, Any] | Message | Sequence[str | dict[str, Any] | Message]


def normalize_messages(messages: MessageInput) -> list[Message]:
    """
    Normalize various message input formats to a list of Message objects.

    Accepts:
    - str: Converted to single user message
    - dict: Converted using Message.from_dict
    - Message: Used as-is
    - List or tuple of the above
    """
    if isinstance(messages, str):
        return [Message.user(messages)]

    if isinstance(messages, Message):
        return [messages]

    if isinstance(messages, dict):
        return [Message.from_dict(messages)]

    if isinstance(messages, (list, tuple)):
        result = []
        for msg in messages:
            if isinstance(msg, str):
                result.append(Message.user(msg))
            elif isinstance(msg, Message):
                result.append(msg)
            elif isinstance(msg, dict):
                result.append(Message.from_dict(msg))
            else:
                raise TypeError(f"Unsupported message type: {type(msg)}")
        return result

    raise TypeError(f"Unsupported messages type: {type(messages)}")


__all__ = [
    "Role",
    "StreamEventType",
    "Attachment",
    "ToolCall",
    "ToolCallDelta",
    "Message",
    "Usage",
    "StreamEvent",
    "CompletionResult",
    "MessageInput",
    "normalize_messages",
    "strip_data_uri",
    "to_data_uri",
    "to_jsonable",
    "DEFAULT_IMAGE_MIME_TYPE",
]
