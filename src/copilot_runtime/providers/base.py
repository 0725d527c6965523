"""
Provider protocol and base classes.

This module defines the capability interface every model provider adapter
implements, plus the shared machinery for streaming (cancellation, upstream
cleanup, malformed-chunk handling) and non-streaming retries.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol, runtime_checkable

from ..cancellation import CancellationToken
from ..config.provider import ProviderConfig
from ..errors import CancellationError
from ..tools.base import EMPTY_PARAMETERS, Tool
from ..types import CompletionResult, Message, StreamEvent, ToolCall

logger = logging.getLogger("copilot_runtime.providers")


@dataclass
class GenerationConfig:
    """Per-request overrides of the provider's model defaults."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tool_choice: str | None = None  # "auto", "none", "required" or a tool name
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """
    Canonical request handed to a provider adapter.

    Attributes:
        messages: Conversation so far, in order
        tools: Tools the model may call
        system_prompt: Instructions placed where the provider expects them
        config: Generation overrides
        cancellation_token: Stops the stream when cancelled
        raw_messages: Already provider-formatted messages, used verbatim
            instead of ``messages`` when given
    """

    messages: Sequence[Message]
    tools: Sequence[Tool] = ()
    system_prompt: str | None = None
    config: GenerationConfig = field(default_factory=GenerationConfig)
    cancellation_token: CancellationToken | None = None
    raw_messages: list[dict[str, Any]] | None = None

    @property
    def token(self) -> CancellationToken:
        return self.cancellation_token or CancellationToken.none()


@runtime_checkable
class ProviderAdapter(Protocol):
    """
    Capability interface for model providers.

    ``stream`` yields a finite, non-restartable sequence of StreamEvents
    ending with DONE or ERROR (or nothing more once cancelled).
    """

    name: str

    @property
    def model_name(self) -> str: ...

    def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]: ...

    async def complete(self, request: ChatRequest) -> CompletionResult: ...


class MalformedChunkError(Exception):
    """A streamed chunk did not have the shape the translator expects."""


class StreamTranslator(ABC):
    """Stateful converter from one provider's stream chunks to StreamEvents."""

    @abstractmethod
    def feed(self, chunk: Any) -> list[StreamEvent]:
        """Translate one upstream chunk. Raise on unexpected shapes."""

    @abstractmethod
    def finish(self) -> list[StreamEvent]:
        """Events closing the turn, ending with DONE."""


def parameter_to_json_schema(param: dict[str, Any]) -> dict[str, Any]:
    """Normalize a parameter schema recursively (object, array, enum)."""
    schema: dict[str, Any] = {}
    if "type" in param:
        schema["type"] = param["type"]
    for key in ("description", "enum", "default", "format", "anyOf", "oneOf", "const", "minimum", "maximum"):
        if key in param:
            schema[key] = param[key]

    if param.get("type") == "array" and isinstance(param.get("items"), dict):
        schema["items"] = parameter_to_json_schema(param["items"])

    if param.get("type") == "object" or "properties" in param:
        schema["type"] = "object"
        properties = param.get("properties") or {}
        schema["properties"] = {name: parameter_to_json_schema(p) for name, p in properties.items()}
        required = list(param["required"]) if isinstance(param.get("required"), list) else []
        # Per-property `required: true` flags are folded into the parent list
        required += [name for name, p in properties.items() if p.get("required") is True and name not in required]
        if required:
            schema["required"] = required
        if "additionalProperties" in param:
            schema["additionalProperties"] = param["additionalProperties"]

    return schema


def tool_parameters_schema(tool: Tool) -> dict[str, Any]:
    """JSON schema of a tool's parameters; never omitted, even without parameters."""
    if not tool.parameters:
        return dict(EMPTY_PARAMETERS, properties={})
    schema = parameter_to_json_schema(tool.parameters)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


class BaseProvider(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses describe how to build request parameters, open the upstream
    stream and translate chunks; this class runs the stream loop with
    cancellation and error handling shared by every provider.
    """

    name: ClassVar[str] = "base"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def model_name(self) -> str:
        return self.config.default_model or ""

    def resolve_model(self, request: ChatRequest) -> str:
        return request.config.model or self.model_name

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def format_tools(self, tools: Sequence[Tool]) -> list[dict[str, Any]]:
        """Convert tool definitions to the provider's declared-function format."""

    @abstractmethod
    def build_params(self, request: ChatRequest, *, stream: bool) -> dict[str, Any]:
        """Full keyword arguments for the SDK call."""

    @abstractmethod
    async def _open_stream(self, params: dict[str, Any]) -> Any:
        """Start the upstream stream; returns an async iterable of chunks."""

    @abstractmethod
    def _translator(self, request: ChatRequest) -> StreamTranslator: ...

    @abstractmethod
    async def _complete_once(self, params: dict[str, Any]) -> CompletionResult:
        """One non-streaming call; errors are reported on the result."""

    @abstractmethod
    def _error_event(self, exc: Exception) -> StreamEvent:
        """Map an SDK exception to an ERROR event."""

    @abstractmethod
    def parse_message(self, payload: dict[str, Any]) -> Message:
        """Rebuild a canonical Message from one provider-formatted message."""

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """
        Stream one turn as canonical events.

        Yields:
            StreamEvents ending with DONE, or ERROR on failure. Once the
            request's cancellation token fires nothing more is yielded.
        """
        token = request.token
        if token.is_cancelled:
            return

        upstream: Any = None
        try:
            params = self.build_params(request, stream=True)
            upstream = await self._open_stream(params)
            translator = self._translator(request)

            async for chunk in upstream:
                if token.is_cancelled:
                    logger.debug("%s stream cancelled", self.name)
                    return

                try:
                    events = translator.feed(chunk)
                except (AttributeError, KeyError, IndexError, TypeError, ValueError, MalformedChunkError) as exc:
                    logger.warning("Malformed %s stream chunk: %s", self.name, exc)
                    yield StreamEvent.error(
                        f"Malformed response from {self.name}: {exc}",
                        status=502,
                        provider=self.name,
                    )
                    return

                for event in events:
                    if token.is_cancelled:
                        return
                    yield event

            if token.is_cancelled:
                return
            for event in translator.finish():
                yield event

        except CancellationError:
            logger.debug("%s stream cancelled", self.name)
            return
        except Exception as exc:
            if token.is_cancelled:
                return
            yield self._error_event(exc)
        finally:
            if upstream is not None:
                await self._close_upstream(upstream)

    @staticmethod
    async def _close_upstream(upstream: Any) -> None:
        close = getattr(upstream, "close", None) or getattr(upstream, "aclose", None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Failed to close upstream stream", exc_info=True)

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def complete(self, request: ChatRequest) -> CompletionResult:
        """
        Non-streaming completion with retry on rate limits and 5xx.

        Returns:
            CompletionResult; check ``.ok`` and use ``.to_message()`` for
            the assistant message.
        """
        token = request.token
        token.raise_if_cancelled()
        params = self.build_params(request, stream=False)

        async def _do() -> CompletionResult:
            return await token.race(self._complete_once(params))

        return await self._with_retry(
            _do,
            attempts=self.config.max_retries + 1,
            backoff=self.config.retry_backoff,
        )

    @staticmethod
    async def _with_retry(
        operation: Callable[[], Any],
        *,
        attempts: int = 3,
        backoff: float = 1.0,
        retryable_statuses: tuple[int, ...] = (429, 500, 502, 503, 504),
    ) -> Any:
        """
        Execute an operation with retry, exponential backoff, and Retry-After support.

        The operation returns a result with a ``status`` attribute; retryable
        statuses are retried until attempts run out and the last result is
        returned.
        """
        current_backoff = backoff
        result = None

        for attempt in range(attempts):
            result = await operation()
            if getattr(result, "status", 200) not in retryable_statuses or attempt == attempts - 1:
                return result

            wait_time = current_backoff * random.uniform(0.8, 1.2)
            headers = getattr(getattr(result, "raw_response", None), "headers", None)
            if headers is not None:
                retry_after = headers.get("Retry-After")
                if retry_after:
                    try:
                        wait_time = float(retry_after)
                    except (ValueError, TypeError):
                        # HTTP-date form; fall back to backoff
                        pass

            logger.info("Retrying after status %s in %.2fs (attempt %d/%d)", result.status, wait_time, attempt + 1, attempts)
            await asyncio.sleep(wait_time)
            current_backoff *= 2

        return result

    # ------------------------------------------------------------------
    # Helpers shared by adapters
    # ------------------------------------------------------------------

    def parse_messages(self, payloads: Sequence[dict[str, Any]]) -> list[Message]:
        return [self.parse_message(p) for p in payloads]

    @staticmethod
    def _tool_calls_from_buffer(buffer: dict[int, dict[str, Any]]) -> list[ToolCall] | None:
        if not buffer:
            return None
        return [ToolCall(id=tc["id"], name=tc["name"], arguments=tc["arguments"]) for _, tc in sorted(buffer.items())]

    async def close(self) -> None:
        """Release SDK resources. Override in subclasses that hold clients."""

    async def __aenter__(self) -> BaseProvider:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


__all__ = [
    "ProviderAdapter",
    "BaseProvider",
    "ChatRequest",
    "GenerationConfig",
    "StreamTranslator",
    "MalformedChunkError",
    "parameter_to_json_schema",
    "tool_parameters_schema",
]
