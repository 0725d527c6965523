"""
Agent loop.

This module turns one user turn into zero or more rounds of
(model call -> tool execution -> result injection), streaming every event
to a sink and finishing with exactly one terminal event.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field

from ..cancellation import CancellationToken
from ..config.agent import LoopConfig
from ..errors import CancellationError, CopilotRuntimeError, error_from_status
from ..knowledge import KnowledgeSearch, SearchOptions, augment_with_knowledge
from ..logging import RunLog, StructuredLogger, Timer, generate_run_id, get_logger
from ..providers.base import ChatRequest, GenerationConfig, ProviderAdapter
from ..streaming import BufferingAdapter, EventChannel, SSEEncoder
from ..tools.approval import ApprovalChannel, ApprovalPolicy
from ..tools.base import Tool, ToolRegistry
from ..types import (
    CompletionResult,
    Message,
    MessageInput,
    Role,
    StreamEvent,
    StreamEventType,
    ToolCall,
    Usage,
    normalize_messages,
)
from .execution import EventSink, ToolExecution, ToolExecutionCoordinator
from .result import RunResult, RunStatus, StopReason


@dataclass
class LoopState:
    """Mutable state of one run. Never shared between runs."""

    messages: list[Message]
    iteration: int = 0
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    cancelled: bool = False
    status: RunStatus = RunStatus.IDLE
    usage: Usage = field(default_factory=Usage)
    executions: list[ToolExecution] = field(default_factory=list)
    finish_reason: str | None = None
    initial_count: int = 0

    def append(self, message: Message) -> None:
        self.messages.append(message)

    @property
    def new_messages(self) -> list[Message]:
        return self.messages[self.initial_count :]


@dataclass
class _TurnOutcome:
    result: CompletionResult
    error: dict | None = None


class AgentLoop:
    """
    Multi-iteration agent loop over a provider adapter.

    Example:
        ```python
        loop = AgentLoop(
            OpenAIProvider(),
            tools=[get_weather],
            system_prompt="You are a helpful assistant.",
            config=LoopConfig(max_iterations=5),
        )

        result = await loop.run("What's the weather in Paris?")
        print(result.content)

        async for frame in loop.stream_sse("And in Tokyo?"):
            await response.write(frame.encode())
        ```
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        tools: ToolRegistry | Sequence[Tool] | None = None,
        *,
        approval_policy: ApprovalPolicy | None = None,
        approvals: ApprovalChannel | None = None,
        config: LoopConfig | None = None,
        knowledge: KnowledgeSearch | None = None,
        knowledge_options: SearchOptions | None = None,
        system_prompt: str | None = None,
        generation: GenerationConfig | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.provider = provider
        self.registry = ToolRegistry.coerce(tools)
        self.config = config or LoopConfig()
        self.approval_policy = approval_policy or ApprovalPolicy.from_mapping(
            self.config.approval_policy, default=self.config.default_approval
        )
        self.approvals = approvals or ApprovalChannel()
        self.knowledge = knowledge
        self.knowledge_options = knowledge_options
        self.system_prompt = system_prompt
        self.generation = generation or GenerationConfig()
        self.logger = logger or get_logger()

    # === Main API ===

    async def run(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
        sink: EventSink | None = None,
        max_iterations: int | None = None,
    ) -> RunResult:
        """
        Run the loop to a terminal state.

        Args:
            messages: Conversation so far; the last user message is the turn
            cancellation_token: Stops the run cooperatively
            sink: Receives every event as it happens, ending with one
                ``done`` or ``error`` event
            max_iterations: Overrides ``config.max_iterations``

        Returns:
            RunResult. Provider failures and cancellation are reported on the
            result, not raised.
        """
        token = cancellation_token or CancellationToken.none()
        limit = self.config.max_iterations if max_iterations is None else max_iterations
        if limit < 0:
            raise ValueError("max_iterations cannot be negative")

        initial = normalize_messages(messages)
        state = LoopState(messages=list(initial), initial_count=len(initial))
        run_id = generate_run_id()
        emit = _SinkCaller(sink)

        with self.logger.trace_context(run_id=run_id, provider=getattr(self.provider, "name", None)):
            timer = Timer()
            self.logger.info("Agent run started", max_iterations=limit, message_count=len(initial))

            state.status = RunStatus.RUNNING
            try:
                stop_reason, error = await self._execute(state, limit, token, emit, run_id)
            except CancellationError:
                stop_reason, error = StopReason.CANCELLED, None
            except Exception as e:
                self.logger.exception("Agent run failed unexpectedly")
                stop_reason = StopReason.FAILED
                if isinstance(e, CopilotRuntimeError):
                    error = e
                else:
                    error = CopilotRuntimeError(f"{type(e).__name__}: {e}", cause=e)

            state.status = RunStatus.from_stop_reason(stop_reason)
            state.cancelled = stop_reason is StopReason.CANCELLED
            result = RunResult(
                messages=list(state.messages),
                new_messages=list(state.new_messages),
                stop_reason=stop_reason,
                iteration=state.iteration,
                finish_reason=state.finish_reason,
                error=error,
                usage=state.usage,
                executions=list(state.executions),
                run_id=run_id,
            )

            self.logger.log_run(
                RunLog(
                    run_id=run_id,
                    provider=getattr(self.provider, "name", "unknown"),
                    model=getattr(self.provider, "model_name", None),
                    duration_ms=timer.stop(),
                    stop_reason=stop_reason.value,
                    iteration=state.iteration,
                    max_iterations=limit,
                    message_count=len(state.messages),
                    tool_execution_count=len(state.executions),
                    input_tokens=state.usage.input_tokens,
                    output_tokens=state.usage.output_tokens,
                    total_tokens=state.usage.total_tokens,
                    error=error.message if error else None,
                )
            )

            await emit(self._terminal_event(result))
            return result

    async def stream(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
        max_iterations: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run the loop and yield its events.

        Events pass through a bounded EventChannel, so a slow consumer
        applies backpressure to the run. Abandoning the iterator cancels
        the run.
        """
        token = cancellation_token or CancellationToken()
        channel = EventChannel(maxsize=self.config.channel_size)

        async def produce() -> RunResult:
            try:
                return await self.run(
                    messages,
                    cancellation_token=token,
                    sink=channel.send,
                    max_iterations=max_iterations,
                )
            finally:
                channel.close()

        task = asyncio.create_task(produce())
        finished = False
        try:
            async for event in channel:
                yield event
            finished = True
        finally:
            if not finished and not task.done():
                token.cancel("stream consumer stopped")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        # Surface producer failures that escaped run()
        await task

    async def stream_sse(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
        max_iterations: int | None = None,
    ) -> AsyncIterator[str]:
        """Run the loop and yield SSE frames."""
        encoder = SSEEncoder()
        events = self.stream(messages, cancellation_token=cancellation_token, max_iterations=max_iterations)
        async for frame in encoder.transform(events):
            yield frame

    # === Loop internals ===

    async def _execute(
        self,
        state: LoopState,
        limit: int,
        token: CancellationToken,
        emit: _SinkCaller,
        run_id: str,
    ) -> tuple[StopReason, CopilotRuntimeError | None]:
        system_prompt, prefix = await self._augment(state, token)

        coordinator = ToolExecutionCoordinator(
            self.registry,
            policy=self.approval_policy,
            approvals=self.approvals,
            config=self.config,
            emit=emit,
            logger=self.logger,
            run_id=run_id,
        )

        while True:
            if token.is_cancelled:
                return StopReason.CANCELLED, None

            await emit(
                StreamEvent(
                    type=StreamEventType.ITERATION,
                    data={"iteration": state.iteration, "max_iterations": limit},
                )
            )
            await emit(
                StreamEvent(
                    type=StreamEventType.META,
                    data={
                        "event": "turn_start",
                        "run_id": run_id,
                        "iteration": state.iteration,
                        "provider": getattr(self.provider, "name", None),
                        "model": getattr(self.provider, "model_name", None),
                    },
                )
            )

            outcome = await self._provider_turn(state, prefix, system_prompt, token, emit)
            result = outcome.result
            if result.usage:
                state.usage = state.usage + result.usage

            if token.is_cancelled:
                # Keep text the client already saw; drop half-formed tool calls
                if result.content:
                    state.append(Message.assistant(content=result.content))
                return StopReason.CANCELLED, None

            if outcome.error is not None:
                if result.content:
                    state.append(Message.assistant(content=result.content))
                error = error_from_status(
                    outcome.error.get("status"),
                    outcome.error.get("message", "Provider error"),
                    provider=getattr(self.provider, "name", None),
                )
                error.context.run_id = run_id
                error.context.iteration = state.iteration
                self.logger.log_error(error, "Provider turn failed")
                return StopReason.FAILED, error

            state.finish_reason = result.finish_reason
            tool_calls = list(result.tool_calls or [])
            state.append(Message.assistant(content=result.content, tool_calls=tool_calls or None))

            if not tool_calls:
                return StopReason.COMPLETED, None

            if state.iteration >= limit:
                # Only reachable with a limit of 0: the calls stay unresolved
                state.pending_tool_calls = tool_calls
                return StopReason.MAX_ITERATIONS, None

            executions = await coordinator.execute_round(
                tool_calls,
                iteration=state.iteration,
                cancellation_token=token,
            )
            state.executions.extend(executions)
            for execution in executions:
                state.append(execution.to_message())
            state.iteration += 1

            if token.is_cancelled:
                return StopReason.CANCELLED, None
            if state.iteration >= limit:
                return StopReason.MAX_ITERATIONS, None

    async def _augment(self, state: LoopState, token: CancellationToken) -> tuple[str | None, list[Message]]:
        """Consult the knowledge collaborator once; returns (system prompt, leading messages)."""
        if self.knowledge is None or token.is_cancelled:
            return self.system_prompt, []

        query = next(
            (m.content for m in reversed(state.messages) if m.role is Role.USER and m.content),
            None,
        )
        try:
            context = await token.race(augment_with_knowledge(self.knowledge, query, self.knowledge_options))
        except CancellationError:
            return self.system_prompt, []
        if context is None:
            return self.system_prompt, []

        if self.config.knowledge_injection == "leading_message":
            return self.system_prompt, [Message.system(context)]
        if self.system_prompt:
            return f"{self.system_prompt}\n\n{context}", []
        return context, []

    async def _provider_turn(
        self,
        state: LoopState,
        prefix: list[Message],
        system_prompt: str | None,
        token: CancellationToken,
        emit: _SinkCaller,
    ) -> _TurnOutcome:
        attempt = 0
        backoff = self.config.provider_retry_backoff

        while True:
            request = ChatRequest(
                messages=[*prefix, *state.messages],
                tools=self.registry.tools,
                system_prompt=system_prompt,
                config=self.generation,
                cancellation_token=token,
            )
            buffer = BufferingAdapter()
            forwarded = False
            error: dict | None = None

            stream = self.provider.stream(request)
            iterator = stream.__aiter__()
            try:
                while True:
                    try:
                        event = await iterator.__anext__()
                    except StopAsyncIteration:
                        break
                    except CancellationError:
                        error = {"status": 499, "message": "Provider stream cancelled"}
                        break
                    except Exception as e:
                        self.logger.exception("Provider stream raised")
                        error = {"status": 500, "message": f"{type(e).__name__}: {e}"}
                        break

                    buffer.emit(event)
                    if event.type is StreamEventType.DONE:
                        continue
                    if event.type is StreamEventType.ERROR:
                        error = dict(event.data or {})
                        break
                    await emit(event)
                    forwarded = True
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if error is None or token.is_cancelled:
                return _TurnOutcome(result=buffer.get_result(), error=error)

            if forwarded or attempt >= self.config.provider_retries:
                return _TurnOutcome(result=buffer.get_result(), error=error)

            delay = backoff * (2**attempt)
            attempt += 1
            self.logger.warning(
                f"Provider error, retrying in {delay:.2f}s",
                attempt=attempt,
                status=error.get("status"),
                error=error.get("message"),
            )
            try:
                await token.race(asyncio.sleep(delay))
            except CancellationError:
                return _TurnOutcome(result=buffer.get_result(), error=error)

    @staticmethod
    def _terminal_event(result: RunResult) -> StreamEvent:
        if result.stop_reason is StopReason.FAILED:
            error = result.error
            data = {
                "status": getattr(error, "http_status", None) or 500,
                "message": error.message if error else "Agent run failed",
                "stop_reason": result.stop_reason.value,
            }
            if error is not None:
                data["code"] = error.code.value
            if result.run_id:
                data["run_id"] = result.run_id
            return StreamEvent(type=StreamEventType.ERROR, data=data)
        return StreamEvent(type=StreamEventType.DONE, data=result)


class _SinkCaller:
    """Calls a sync or async sink uniformly."""

    def __init__(self, sink: EventSink | None) -> None:
        self._sink = sink

    async def __call__(self, event: StreamEvent) -> None:
        if self._sink is None:
            return
        result = self._sink(event)
        if inspect.isawaitable(result):
            await result


async def run_agent_loop(
    messages: MessageInput,
    tools: ToolRegistry | Sequence[Tool] | None,
    provider: ProviderAdapter,
    approval_policy: ApprovalPolicy | None = None,
    max_iterations: int | None = None,
    cancellation_token: CancellationToken | None = None,
    *,
    config: LoopConfig | None = None,
    sink: EventSink | None = None,
    approvals: ApprovalChannel | None = None,
    knowledge: KnowledgeSearch | None = None,
    knowledge_options: SearchOptions | None = None,
    system_prompt: str | None = None,
    generation: GenerationConfig | None = None,
) -> RunResult:
    """
    Run the agent loop once.

    Convenience wrapper around ``AgentLoop(...).run(...)``.

    Example:
        ```python
        approvals = ApprovalChannel()
        result = await run_agent_loop(
            [Message.user("Delete the temp files")],
            [delete_files],
            provider,
            approval_policy=ApprovalPolicy.manual("delete_files"),
            approvals=approvals,
            sink=lambda event: print(event.to_sse(), end=""),
        )
        ```
    """
    loop = AgentLoop(
        provider,
        tools,
        approval_policy=approval_policy,
        approvals=approvals,
        config=config,
        knowledge=knowledge,
        knowledge_options=knowledge_options,
        system_prompt=system_prompt,
        generation=generation,
    )
    return await loop.run(
        messages,
        cancellation_token=cancellation_token,
        sink=sink,
        max_iterations=max_iterations,
    )


__all__ = ["AgentLoop", "LoopState", "run_agent_loop"]
