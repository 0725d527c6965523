"""
Tool execution coordination for the agent loop.

Every tool call in an assistant turn becomes a ToolExecution that moves
through ``pending -> [awaiting_approval] -> executing -> completed|error``.
Whatever happens to it, each execution yields exactly one tool-result
message, returned in the order the model declared the calls.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..cancellation import CancellationToken
from ..config.agent import LoopConfig
from ..errors import (
    ApprovalRejectedError,
    CancellationError,
    CopilotRuntimeError,
    DuplicateToolCallError,
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from ..logging import StructuredLogger, ToolExecutionLog, get_logger, truncate_for_log
from ..tools.approval import ApprovalChannel, ApprovalPolicy
from ..tools.base import Tool, ToolRegistry, ToolResult
from ..types import Message, StreamEvent, StreamEventType, ToolCall

EventSink = Callable[[StreamEvent], "Awaitable[None] | None"]


class ToolExecutionStatus(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolExecutionStatus.COMPLETED, ToolExecutionStatus.ERROR)


class ApprovalStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def serialize_tool_output(value: Any) -> str:
    """Text sent back to the model for a handler's return value."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    return json.dumps(value, ensure_ascii=False, default=str)


def error_payload(error: CopilotRuntimeError) -> dict[str, Any]:
    """Structured payload for a failed execution."""
    payload: dict[str, Any] = {
        "type": type(error).__name__,
        "code": error.code.value,
        "message": error.message,
    }
    raw_arguments = getattr(error, "raw_arguments", None)
    if raw_arguments is not None:
        payload["raw_arguments"] = raw_arguments
    return {"error": payload}


@dataclass
class ToolExecution:
    """
    One tool call's journey through approval and execution.

    Keyed by ``(iteration, id)``; a provider may reuse call ids across
    turns, so the same id in a later iteration is a new execution.
    """

    id: str
    name: str
    raw_arguments: str
    iteration: int
    args: dict[str, Any] | None = None
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    approval_status: ApprovalStatus = ApprovalStatus.NOT_REQUIRED
    result: Any = None
    error: dict[str, Any] | None = None
    started_at: float | None = None
    completed_at: float | None = None
    truncated: bool = False
    _content: str | None = field(default=None, repr=False)

    @classmethod
    def from_call(cls, call: ToolCall, iteration: int) -> ToolExecution:
        return cls(id=call.id, name=call.name, raw_arguments=call.arguments, iteration=iteration)

    @property
    def key(self) -> tuple[int, str]:
        return (self.iteration, self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.status is ToolExecutionStatus.COMPLETED

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at) * 1000

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return self.error["error"]["message"]

    @property
    def content(self) -> str:
        """Tool-result message content (set once the execution is terminal)."""
        if self._content is not None:
            return self._content
        if self.error is not None:
            return json.dumps(self.error, ensure_ascii=False)
        return serialize_tool_output(self.result)

    def complete(self, result: Any, *, max_chars: int | None = None) -> None:
        self.status = ToolExecutionStatus.COMPLETED
        self.result = result
        self.completed_at = time.time()
        content = serialize_tool_output(result)
        if max_chars is not None and len(content) > max_chars:
            content = content[:max_chars]
            self.truncated = True
        self._content = content

    def fail(self, error: CopilotRuntimeError) -> None:
        self.status = ToolExecutionStatus.ERROR
        self.error = error_payload(error)
        self.completed_at = time.time()
        self._content = json.dumps(self.error, ensure_ascii=False)

    def to_message(self) -> Message:
        return Message.tool_result(self.id, self.content, name=self.name, is_error=self.error is not None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "iteration": self.iteration,
            "status": self.status.value,
            "approval_status": self.approval_status.value,
            "args": self.args,
            "raw_arguments": self.raw_arguments,
            "result": self.result if self.status is ToolExecutionStatus.COMPLETED else None,
            "error": self.error,
            "truncated": self.truncated,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class ToolExecutionCoordinator:
    """
    Runs one round of tool calls for the agent loop.

    Example:
        ```python
        coordinator = ToolExecutionCoordinator(
            ToolRegistry([get_weather]),
            policy=ApprovalPolicy.manual("delete_file"),
            approvals=approvals,
        )
        executions = await coordinator.execute_round(calls, iteration=0)
        messages = [e.to_message() for e in executions]
        ```
    """

    def __init__(
        self,
        registry: ToolRegistry | Sequence[Tool] | None,
        *,
        policy: ApprovalPolicy | None = None,
        approvals: ApprovalChannel | None = None,
        config: LoopConfig | None = None,
        emit: EventSink | None = None,
        logger: StructuredLogger | None = None,
        run_id: str | None = None,
    ) -> None:
        self.registry = ToolRegistry.coerce(registry)
        self.config = config or LoopConfig()
        self.policy = policy or ApprovalPolicy.from_mapping(
            self.config.approval_policy, default=self.config.default_approval
        )
        self.approvals = approvals or ApprovalChannel()
        self._emit = emit
        self.logger = logger or get_logger()
        self.run_id = run_id

    async def execute_round(
        self,
        tool_calls: Sequence[ToolCall],
        *,
        iteration: int,
        cancellation_token: CancellationToken | None = None,
    ) -> list[ToolExecution]:
        """
        Execute every call of one assistant turn.

        Returns:
            One terminal ToolExecution per call, in declaration order.
        """
        token = cancellation_token or CancellationToken.none()
        executions = [ToolExecution.from_call(tc, iteration) for tc in tool_calls]

        runnable: list[ToolExecution] = []
        seen: set[str] = set()
        for execution in executions:
            await self._publish(execution)
            if execution.id in seen:
                await self._finish(execution, error=DuplicateToolCallError(call_id=execution.id, tool_name=execution.name))
                continue
            seen.add(execution.id)
            runnable.append(execution)

        if self.config.parallel_tool_execution:
            await asyncio.gather(*(self._run(e, token) for e in runnable))
        else:
            for execution in runnable:
                await self._run(execution, token)

        return executions

    async def _run(self, execution: ToolExecution, token: CancellationToken) -> None:
        if token.is_cancelled:
            await self._finish(execution, error=CancellationError("Cancelled"))
            return

        tool = self.registry.get(execution.name)
        if tool is None:
            await self._finish(execution, error=ToolNotFoundError(tool_name=execution.name))
            return

        try:
            execution.args = ToolCall(execution.id, execution.name, execution.raw_arguments).parse_arguments()
            if self.config.validate_tool_arguments or tool.strict:
                tool.validate_arguments(execution.args)
        except ToolArgumentError as e:
            if e.raw_arguments is None:
                e.raw_arguments = execution.raw_arguments
            await self._finish(execution, error=e)
            return

        if self.policy.requires_approval(execution.name):
            rejection = await self._await_approval(execution, token)
            if rejection is not None:
                await self._finish(execution, error=rejection)
                return

        # Last point where a cancelled run may skip the call
        if token.is_cancelled:
            await self._finish(execution, error=CancellationError("Cancelled"))
            return

        execution.status = ToolExecutionStatus.EXECUTING
        execution.started_at = time.time()
        await self._publish(execution)

        try:
            output = await asyncio.wait_for(tool.invoke(execution.args), timeout=self.config.tool_timeout)
        except asyncio.TimeoutError:
            await self._finish(execution, error=ToolTimeoutError(timeout=self.config.tool_timeout, tool_name=tool.name))
            return
        except CopilotRuntimeError as e:
            await self._finish(execution, error=e)
            return
        except Exception as e:
            self.logger.exception(f"Tool '{tool.name}' raised", tool_call_id=execution.id)
            await self._finish(
                execution,
                error=ToolExecutionError(f"{type(e).__name__}: {e}", tool_name=tool.name, cause=e),
            )
            return

        if isinstance(output, ToolResult):
            if not output.success:
                await self._finish(
                    execution,
                    error=ToolExecutionError(output.error or "Tool execution failed", tool_name=tool.name),
                )
                return
            output = output.content

        await self._finish(execution, result=output)

    async def _await_approval(self, execution: ToolExecution, token: CancellationToken) -> CopilotRuntimeError | None:
        # Registered before the event goes out so a sink may decide right away
        try:
            self.approvals.register(execution.id)
        except DuplicateToolCallError as e:
            e.tool_name = execution.name
            return e

        try:
            execution.status = ToolExecutionStatus.AWAITING_APPROVAL
            execution.approval_status = ApprovalStatus.PENDING
            await self._publish(execution)
            decision = await self.approvals.wait(
                execution.id,
                cancellation_token=token,
                timeout=self.config.approval_timeout,
            )
        except CancellationError:
            return CancellationError("Cancelled")
        except asyncio.TimeoutError:
            execution.approval_status = ApprovalStatus.REJECTED
            return ApprovalRejectedError(reason="approval timed out", tool_name=execution.name)
        finally:
            self.approvals.release(execution.id)

        if not decision.approved:
            execution.approval_status = ApprovalStatus.REJECTED
            return ApprovalRejectedError(reason=decision.reason, tool_name=execution.name)

        execution.approval_status = ApprovalStatus.APPROVED
        return None

    async def _finish(
        self,
        execution: ToolExecution,
        *,
        result: Any = None,
        error: CopilotRuntimeError | None = None,
    ) -> None:
        if error is not None:
            execution.fail(error)
        else:
            execution.complete(result, max_chars=self.config.max_tool_output_chars)

        self.logger.log_tool_execution(
            ToolExecutionLog(
                run_id=self.run_id,
                tool_name=execution.name,
                tool_call_id=execution.id,
                iteration=execution.iteration,
                duration_ms=execution.duration_ms,
                status=execution.status.value,
                approval_status=execution.approval_status.value,
                error=execution.error_message,
                output_preview=truncate_for_log(execution.content),
                output_length=len(execution.content),
            )
        )
        await self._publish(execution)

    async def _publish(self, execution: ToolExecution) -> None:
        if self._emit is None:
            return
        result = self._emit(StreamEvent(type=StreamEventType.TOOL_EXECUTION, data=execution.to_dict()))
        if inspect.isawaitable(result):
            await result


__all__ = [
    "EventSink",
    "ToolExecution",
    "ToolExecutionStatus",
    "ApprovalStatus",
    "ToolExecutionCoordinator",
    "serialize_tool_output",
    "error_payload",
]
