"""
OpenAI provider adapter.

Speaks the ``chat.completions`` wire format: the system prompt is a
leading ``system`` message, tools are ``{"type": "function"}`` entries and
tool results are ``tool`` role messages carrying ``tool_call_id``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from ..config.provider import OpenAIConfig, ProviderConfig
from ..errors import MissingAPIKeyError
from ..tools.base import Tool
from ..types import (
    Attachment,
    CompletionResult,
    Message,
    Role,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolCallDelta,
    Usage,
)
from .base import BaseProvider, ChatRequest, StreamTranslator, tool_parameters_schema


def _parse_usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    input_tokens = int(getattr(raw, "prompt_tokens", 0) or 0)
    output_tokens = int(getattr(raw, "completion_tokens", 0) or 0)
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=int(getattr(raw, "total_tokens", 0) or 0) or input_tokens + output_tokens,
    )


class OpenAIStreamTranslator(StreamTranslator):
    """Turns ``ChatCompletionChunk`` objects into StreamEvents."""

    def __init__(self, model: str) -> None:
        self.model = model
        self.content = ""
        self.reasoning = ""
        self.tool_calls: dict[int, dict[str, Any]] = {}  # index -> {id, name, arguments}
        self.ended: set[int] = set()
        self.usage: Usage | None = None
        self.finish_reason: str | None = None

    def feed(self, chunk: Any) -> list[StreamEvent]:
        events: list[StreamEvent] = []

        if getattr(chunk, "usage", None):
            self.usage = _parse_usage(chunk.usage)
            events.append(StreamEvent(type=StreamEventType.USAGE, data=self.usage))

        if not chunk.choices:
            return events

        choice = chunk.choices[0]
        delta = choice.delta

        # Reasoning models emit their trace via delta.reasoning_content
        reasoning = getattr(delta, "reasoning_content", None)
        if reasoning:
            self.reasoning += reasoning
            events.append(StreamEvent(type=StreamEventType.THINKING, data=reasoning))

        if delta.content:
            self.content += delta.content
            events.append(StreamEvent(type=StreamEventType.TEXT_DELTA, data=delta.content))

        for tc_delta in delta.tool_calls or []:
            idx = tc_delta.index
            function = tc_delta.function

            if idx not in self.tool_calls:
                self.tool_calls[idx] = {
                    "id": tc_delta.id or "",
                    "name": (function.name if function else None) or "",
                    "arguments": "",
                }
                events.append(
                    StreamEvent(
                        type=StreamEventType.TOOL_CALL_START,
                        data=ToolCallDelta(id=self.tool_calls[idx]["id"], index=idx, name=self.tool_calls[idx]["name"]),
                    )
                )

            buffered = self.tool_calls[idx]
            if tc_delta.id:
                buffered["id"] = tc_delta.id
            if function is not None:
                if function.name:
                    buffered["name"] = function.name
                if function.arguments:
                    buffered["arguments"] += function.arguments
                    events.append(
                        StreamEvent(
                            type=StreamEventType.TOOL_CALL_DELTA,
                            data=ToolCallDelta(id=buffered["id"], index=idx, arguments_delta=function.arguments),
                        )
                    )

        if choice.finish_reason:
            self.finish_reason = choice.finish_reason
            events.extend(self._end_tool_calls())

        return events

    def _end_tool_calls(self) -> list[StreamEvent]:
        events = []
        for idx in sorted(self.tool_calls):
            if idx in self.ended:
                continue
            self.ended.add(idx)
            tc = self.tool_calls[idx]
            events.append(
                StreamEvent(
                    type=StreamEventType.TOOL_CALL_END,
                    data=ToolCall(id=tc["id"], name=tc["name"], arguments=tc["arguments"]),
                )
            )
        return events

    def finish(self) -> list[StreamEvent]:
        events = self._end_tool_calls()
        tool_calls = BaseProvider._tool_calls_from_buffer(self.tool_calls)
        result = CompletionResult(
            content=self.content or None,
            tool_calls=tool_calls,
            usage=self.usage,
            reasoning=self.reasoning or None,
            model=self.model,
            finish_reason=self.finish_reason or ("tool_calls" if tool_calls else "stop"),
        )
        events.append(StreamEvent(type=StreamEventType.DONE, data=result))
        return events


class OpenAIProvider(BaseProvider):
    """
    OpenAI chat completions adapter.

    Example:
        ```python
        provider = OpenAIProvider(OpenAIConfig(default_model="gpt-4o"))
        request = ChatRequest(messages=[Message.user("Hello")])
        async for event in provider.stream(request):
            ...
        ```
    """

    name = "openai"

    def __init__(self, config: ProviderConfig | None = None, *, client: AsyncOpenAI | None = None) -> None:
        super().__init__(config or OpenAIConfig())

        if client is None:
            if not self.config.api_key:
                raise MissingAPIKeyError(provider=self.name, env_var="OPENAI_API_KEY")
            client_kwargs: dict[str, Any] = {
                "api_key": self.config.api_key,
                "timeout": self.config.timeout,
                # complete() retries itself; streams are never replayed
                "max_retries": 0,
            }
            if self.config.base_url:
                client_kwargs["base_url"] = self.config.base_url
            if self.config.organization:
                client_kwargs["organization"] = self.config.organization
            client = AsyncOpenAI(**client_kwargs)

        self.client = client

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Request formatting
    # ------------------------------------------------------------------

    @staticmethod
    def format_content(message: Message) -> str | list[dict[str, Any]] | None:
        """Plain string unless the message carries images; then text first, images after."""
        if not message.has_image_attachments:
            return message.content

        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for attachment in message.image_attachments:
            blocks.append({"type": "image_url", "image_url": {"url": attachment.data_uri(), "detail": "auto"}})
        return blocks

    def format_message(self, message: Message) -> dict[str, Any]:
        if message.role is Role.TOOL:
            return {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content or ""}

        formatted: dict[str, Any] = {"role": message.role.value, "content": self.format_content(message)}
        if message.role is Role.ASSISTANT and message.tool_calls:
            formatted["tool_calls"] = [
                {"id": tc.id, "type": "function", "function": {"name": tc.name, "arguments": tc.arguments}}
                for tc in message.tool_calls
            ]
        if message.name and message.role is not Role.ASSISTANT:
            formatted["name"] = message.name
        return formatted

    def format_messages(self, request: ChatRequest) -> list[dict[str, Any]]:
        formatted: list[dict[str, Any]] = []
        if request.system_prompt:
            formatted.append({"role": "system", "content": request.system_prompt})

        if request.raw_messages is not None:
            formatted.extend(request.raw_messages)
        else:
            formatted.extend(self.format_message(m) for m in request.messages)
        return formatted

    def format_tools(self, tools: Sequence[Tool]) -> list[dict[str, Any]]:
        formatted = []
        for tool in tools:
            tool_def: dict[str, Any] = {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool_parameters_schema(tool),
                },
            }
            if tool.strict:
                tool_def["function"]["strict"] = True
            formatted.append(tool_def)
        return formatted

    def build_params(self, request: ChatRequest, *, stream: bool) -> dict[str, Any]:
        cfg = request.config
        params: dict[str, Any] = {
            "model": self.resolve_model(request),
            "messages": self.format_messages(request),
        }
        if stream:
            params["stream"] = True
            params["stream_options"] = {"include_usage": True}

        if request.tools:
            params["tools"] = self.format_tools(request.tools)
            if cfg.tool_choice:
                if cfg.tool_choice in ("auto", "none", "required"):
                    params["tool_choice"] = cfg.tool_choice
                else:
                    params["tool_choice"] = {"type": "function", "function": {"name": cfg.tool_choice}}

        temperature = cfg.temperature if cfg.temperature is not None else self.config.default_temperature
        if temperature is not None:
            params["temperature"] = temperature
        max_tokens = cfg.max_tokens or self.config.default_max_tokens
        if max_tokens is not None:
            params["max_tokens"] = max_tokens

        params.update(cfg.extra)
        return params

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def parse_message(self, payload: dict[str, Any]) -> Message:
        """Rebuild a Message from a chat.completions message dict."""
        role = Role(payload["role"])
        content = payload.get("content")
        attachments: list[Attachment] = []

        if isinstance(content, list):
            texts = []
            for block in content:
                if block.get("type") == "text":
                    texts.append(block.get("text", ""))
                elif block.get("type") == "image_url":
                    url = block["image_url"]["url"]
                    attachments.append(Attachment(type="image", data=url))
            content = "\n".join(texts) if texts else None

        tool_calls = None
        if payload.get("tool_calls"):
            tool_calls = [
                ToolCall(id=tc["id"], name=tc["function"]["name"], arguments=tc["function"].get("arguments") or "")
                for tc in payload["tool_calls"]
            ]

        return Message(
            role=role,
            content=content,
            name=payload.get("name"),
            tool_calls=tool_calls,
            tool_call_id=payload.get("tool_call_id"),
            attachments=attachments or None,
        )

    def _translator(self, request: ChatRequest) -> StreamTranslator:
        return OpenAIStreamTranslator(self.resolve_model(request))

    async def _open_stream(self, params: dict[str, Any]) -> Any:
        return await self.client.chat.completions.create(**params)

    async def _complete_once(self, params: dict[str, Any]) -> CompletionResult:
        try:
            response = await self.client.chat.completions.create(**params)
        except openai.APIConnectionError as e:
            return CompletionResult(status=503, error=f"Connection error: {e}")
        except openai.RateLimitError as e:
            return CompletionResult(status=429, error=f"Rate limit exceeded: {e}", raw_response=e.response)
        except openai.APIStatusError as e:
            return CompletionResult(status=e.status_code, error=str(e), raw_response=e.response)

        try:
            choice = response.choices[0]
            msg = choice.message
            tool_calls = None
            if msg.tool_calls:
                tool_calls = [
                    ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "")
                    for tc in msg.tool_calls
                ]
            return CompletionResult(
                content=msg.content,
                tool_calls=tool_calls,
                usage=_parse_usage(getattr(response, "usage", None)),
                reasoning=getattr(msg, "reasoning_content", None),
                model=getattr(response, "model", None) or params.get("model"),
                finish_reason=choice.finish_reason,
                raw_response=response,
            )
        except (AttributeError, IndexError, TypeError) as e:
            return CompletionResult(status=502, error=f"Malformed response from openai: {e}")

    def _error_event(self, exc: Exception) -> StreamEvent:
        if isinstance(exc, openai.APITimeoutError):
            return StreamEvent.error(f"Request timed out: {exc}", status=504, provider=self.name)
        if isinstance(exc, openai.APIConnectionError):
            return StreamEvent.error(f"Connection error: {exc}", status=503, provider=self.name)
        if isinstance(exc, openai.RateLimitError):
            return StreamEvent.error(f"Rate limit exceeded: {exc}", status=429, provider=self.name)
        if isinstance(exc, openai.APIStatusError):
            return StreamEvent.error(str(exc), status=exc.status_code, provider=self.name)
        return StreamEvent.error(f"{type(exc).__name__}: {exc}", status=500, provider=self.name)


__all__ = ["OpenAIProvider", "OpenAIStreamTranslator"]
