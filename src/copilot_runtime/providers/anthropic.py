"""
Anthropic provider adapter.

Speaks the Messages API: the system prompt is a top-level ``system`` field,
content is a list of ``text``/``image``/``tool_use``/``tool_result`` blocks,
and tool results travel inside ``user`` messages.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from ..config.provider import AnthropicConfig, ProviderConfig
from ..errors import MissingAPIKeyError, ToolArgumentError
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
from .base import BaseProvider, ChatRequest, MalformedChunkError, StreamTranslator, tool_parameters_schema

# Anthropic stop reasons mapped onto the OpenAI-style names used elsewhere
_FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
}


class AnthropicStreamTranslator(StreamTranslator):
    """
    Turns raw Messages API stream events into StreamEvents.

    Anthropic streams typed events:
    - message_start: initial message metadata and input token count
    - content_block_start: start of a text, thinking or tool_use block
    - content_block_delta: text, thinking or partial tool input JSON
    - content_block_stop: end of a content block
    - message_delta: stop reason and output token count
    - message_stop: stream complete
    """

    def __init__(self, model: str) -> None:
        self.model = model
        self.content = ""
        self.reasoning = ""
        self.tool_calls: dict[int, dict[str, Any]] = {}
        self.usage: Usage | None = None
        self.stop_reason: str | None = None

    def feed(self, chunk: Any) -> list[StreamEvent]:
        event_type = chunk.type

        if event_type == "message_start":
            usage = getattr(chunk.message, "usage", None)
            if usage is not None:
                self.usage = Usage(input_tokens=usage.input_tokens, total_tokens=usage.input_tokens)
            return []

        if event_type == "content_block_start":
            block = chunk.content_block
            if block.type == "tool_use":
                self.tool_calls[chunk.index] = {"id": block.id, "name": block.name, "arguments": ""}
                return [
                    StreamEvent(
                        type=StreamEventType.TOOL_CALL_START,
                        data=ToolCallDelta(id=block.id, index=chunk.index, name=block.name),
                    )
                ]
            return []

        if event_type == "content_block_delta":
            delta = chunk.delta
            if delta.type == "text_delta":
                self.content += delta.text
                return [StreamEvent(type=StreamEventType.TEXT_DELTA, data=delta.text)]
            if delta.type == "thinking_delta":
                self.reasoning += delta.thinking
                return [StreamEvent(type=StreamEventType.THINKING, data=delta.thinking)]
            if delta.type == "input_json_delta":
                if chunk.index not in self.tool_calls:
                    raise MalformedChunkError(f"input_json_delta for unknown block {chunk.index}")
                buffered = self.tool_calls[chunk.index]
                buffered["arguments"] += delta.partial_json
                if not delta.partial_json:
                    return []
                return [
                    StreamEvent(
                        type=StreamEventType.TOOL_CALL_DELTA,
                        data=ToolCallDelta(id=buffered["id"], index=chunk.index, arguments_delta=delta.partial_json),
                    )
                ]
            return []

        if event_type == "content_block_stop":
            if chunk.index in self.tool_calls:
                tc = self.tool_calls[chunk.index]
                return [
                    StreamEvent(
                        type=StreamEventType.TOOL_CALL_END,
                        data=ToolCall(id=tc["id"], name=tc["name"], arguments=tc["arguments"]),
                    )
                ]
            return []

        if event_type == "message_delta":
            self.stop_reason = getattr(chunk.delta, "stop_reason", None) or self.stop_reason
            usage = getattr(chunk, "usage", None)
            if usage is not None:
                output_tokens = usage.output_tokens or 0
                input_tokens = self.usage.input_tokens if self.usage else 0
                self.usage = Usage(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                )
                return [StreamEvent(type=StreamEventType.USAGE, data=self.usage)]
            return []

        # message_stop, ping and future event types carry nothing we need
        return []

    def finish(self) -> list[StreamEvent]:
        tool_calls = BaseProvider._tool_calls_from_buffer(self.tool_calls)
        result = CompletionResult(
            content=self.content or None,
            tool_calls=tool_calls,
            usage=self.usage,
            reasoning=self.reasoning or None,
            model=self.model,
            finish_reason=_FINISH_REASONS.get(self.stop_reason or "", self.stop_reason)
            or ("tool_calls" if tool_calls else "stop"),
        )
        return [StreamEvent(type=StreamEventType.DONE, data=result)]


class AnthropicProvider(BaseProvider):
    """
    Anthropic Messages API adapter.

    Example:
        ```python
        provider = AnthropicProvider(AnthropicConfig(default_model="claude-sonnet-4-20250514"))
        result = await provider.complete(ChatRequest(messages=[Message.user("Hi")]))
        print(result.content)
        ```
    """

    name = "anthropic"

    def __init__(self, config: ProviderConfig | None = None, *, client: AsyncAnthropic | None = None) -> None:
        super().__init__(config or AnthropicConfig())

        if client is None:
            if not self.config.api_key:
                raise MissingAPIKeyError(provider=self.name, env_var="ANTHROPIC_API_KEY")
            client_kwargs: dict[str, Any] = {
                "api_key": self.config.api_key,
                "timeout": self.config.timeout,
                "max_retries": 0,
            }
            if self.config.base_url:
                client_kwargs["base_url"] = self.config.base_url
            client = AsyncAnthropic(**client_kwargs)

        self.client = client

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Request formatting
    # ------------------------------------------------------------------

    @staticmethod
    def image_block(attachment: Attachment) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": attachment.media_type,
                "data": attachment.base64_payload(),
            },
        }

    def format_content(self, message: Message) -> str | list[dict[str, Any]]:
        """Plain string unless the message carries images; then images first, text after."""
        if not message.has_image_attachments:
            return message.content or ""

        blocks = [self.image_block(a) for a in message.image_attachments]
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return blocks

    def _assistant_content(self, message: Message) -> str | list[dict[str, Any]]:
        if not message.tool_calls:
            return message.content or ""

        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for tc in message.tool_calls:
            try:
                tool_input = tc.parse_arguments()
            except ToolArgumentError:
                # The API only accepts objects here; the raw text is lost
                tool_input = {}
            blocks.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": tool_input})
        return blocks

    def format_messages(self, request: ChatRequest) -> tuple[str, list[dict[str, Any]]]:
        """Return ``(system, messages)``; system-role messages are folded into ``system``."""
        system_parts = [request.system_prompt] if request.system_prompt else []

        if request.raw_messages is not None:
            return "\n\n".join(system_parts), list(request.raw_messages)

        formatted: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role is Role.SYSTEM:
                if msg.content:
                    system_parts.append(msg.content)
                continue

            if msg.role is Role.TOOL:
                block = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content or ""}
                if msg.is_error:
                    block["is_error"] = True
                previous = formatted[-1] if formatted else None
                # Consecutive tool results share one user turn
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and previous["content"]
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    formatted.append({"role": "user", "content": [block]})
                continue

            if msg.role is Role.ASSISTANT:
                formatted.append({"role": "assistant", "content": self._assistant_content(msg)})
            else:
                formatted.append({"role": "user", "content": self.format_content(msg)})

        return "\n\n".join(system_parts), formatted

    def format_tools(self, tools: Sequence[Tool]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool_parameters_schema(tool),
            }
            for tool in tools
        ]

    def build_params(self, request: ChatRequest, *, stream: bool) -> dict[str, Any]:
        cfg = request.config
        system, messages = self.format_messages(request)
        params: dict[str, Any] = {
            "model": self.resolve_model(request),
            "messages": messages,
            "max_tokens": cfg.max_tokens or self.config.default_max_tokens or 4096,
        }
        if stream:
            params["stream"] = True
        if system:
            params["system"] = system

        temperature = cfg.temperature if cfg.temperature is not None else self.config.default_temperature
        if temperature is not None:
            params["temperature"] = temperature

        if request.tools:
            params["tools"] = self.format_tools(request.tools)
            if cfg.tool_choice:
                if cfg.tool_choice == "auto":
                    params["tool_choice"] = {"type": "auto"}
                elif cfg.tool_choice == "none":
                    params["tool_choice"] = {"type": "none"}
                elif cfg.tool_choice in ("required", "any"):
                    params["tool_choice"] = {"type": "any"}
                else:
                    params["tool_choice"] = {"type": "tool", "name": cfg.tool_choice}

        params.update(cfg.extra)
        return params

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def parse_message(self, payload: dict[str, Any]) -> Message:
        """Rebuild one Message from a Messages API message dict.

        A user message holding several ``tool_result`` blocks maps to several
        tool messages; use ``parse_messages`` for those.
        """
        messages = self._parse_payload(payload)
        if len(messages) != 1:
            raise ValueError("Payload expands to more than one message; use parse_messages()")
        return messages[0]

    def parse_messages(self, payloads: Sequence[dict[str, Any]]) -> list[Message]:
        parsed: list[Message] = []
        for payload in payloads:
            parsed.extend(self._parse_payload(payload))
        return parsed

    @staticmethod
    def _parse_payload(payload: dict[str, Any]) -> list[Message]:
        role = Role(payload["role"])
        content = payload.get("content")
        if isinstance(content, str):
            return [Message(role=role, content=content)]

        texts: list[str] = []
        attachments: list[Attachment] = []
        tool_calls: list[ToolCall] = []
        tool_results: list[Message] = []

        for block in content or []:
            block_type = block.get("type")
            if block_type == "text":
                texts.append(block.get("text", ""))
            elif block_type == "image":
                source = block["source"]
                attachments.append(Attachment(type="image", data=source["data"], mime_type=source.get("media_type")))
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block["id"], name=block["name"], arguments=json.dumps(block.get("input") or {}))
                )
            elif block_type == "tool_result":
                result = block.get("content", "")
                if isinstance(result, list):
                    result = "".join(b.get("text", "") for b in result if b.get("type") == "text")
                tool_results.append(
                    Message.tool_result(block["tool_use_id"], result, is_error=bool(block.get("is_error")))
                )

        if tool_results:
            return tool_results

        return [
            Message(
                role=role,
                content="\n".join(texts) if texts else None,
                tool_calls=tool_calls or None,
                attachments=attachments or None,
            )
        ]

    def _translator(self, request: ChatRequest) -> StreamTranslator:
        return AnthropicStreamTranslator(self.resolve_model(request))

    async def _open_stream(self, params: dict[str, Any]) -> Any:
        return await self.client.messages.create(**params)

    async def _complete_once(self, params: dict[str, Any]) -> CompletionResult:
        try:
            response = await self.client.messages.create(**params)
        except anthropic.APIConnectionError as e:
            return CompletionResult(status=503, error=f"Connection error: {e}")
        except anthropic.RateLimitError as e:
            return CompletionResult(status=429, error=f"Rate limit exceeded: {e}", raw_response=e.response)
        except anthropic.APIStatusError as e:
            return CompletionResult(status=e.status_code, error=str(e.message), raw_response=e.response)

        try:
            texts: list[str] = []
            thinking: list[str] = []
            tool_calls: list[ToolCall] = []
            for block in response.content:
                if block.type == "text":
                    texts.append(block.text)
                elif block.type == "thinking":
                    thinking.append(block.thinking)
                elif block.type == "tool_use":
                    tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input or {})))

            usage = None
            if getattr(response, "usage", None) is not None:
                usage = Usage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                )

            return CompletionResult(
                content="".join(texts) or None,
                tool_calls=tool_calls or None,
                usage=usage,
                reasoning="".join(thinking) or None,
                model=getattr(response, "model", None) or params.get("model"),
                finish_reason=_FINISH_REASONS.get(response.stop_reason or "", response.stop_reason),
                raw_response=response,
            )
        except (AttributeError, TypeError) as e:
            return CompletionResult(status=502, error=f"Malformed response from anthropic: {e}")

    def _error_event(self, exc: Exception) -> StreamEvent:
        if isinstance(exc, anthropic.APITimeoutError):
            return StreamEvent.error(f"Request timed out: {exc}", status=504, provider=self.name)
        if isinstance(exc, anthropic.APIConnectionError):
            return StreamEvent.error(f"Connection error: {exc}", status=503, provider=self.name)
        if isinstance(exc, anthropic.RateLimitError):
            return StreamEvent.error(f"Rate limit exceeded: {exc}", status=429, provider=self.name)
        if isinstance(exc, anthropic.APIStatusError):
            return StreamEvent.error(str(exc.message), status=exc.status_code, provider=self.name)
        return StreamEvent.error(f"{type(exc).__name__}: {exc}", status=500, provider=self.name)


__all__ = ["AnthropicProvider", "AnthropicStreamTranslator"]
