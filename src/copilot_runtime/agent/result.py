"""
Agent loop result types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..types import Message, Role, Usage

if TYPE_CHECKING:
    from ..errors import CopilotRuntimeError
    from .execution import ToolExecution


class StopReason(str, Enum):
    """Why a run ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"

    @classmethod
    def from_stop_reason(cls, reason: StopReason) -> RunStatus:
        return cls(reason.value)


@dataclass
class RunResult:
    """
    Final state of one agent loop run.

    Attributes:
        messages: Full conversation after the run (input plus new messages)
        new_messages: Messages appended during the run
        stop_reason: Why the run ended
        iteration: Completed model-call-plus-tool-round cycles
        finish_reason: The provider's finish reason for the last turn
        error: Set when ``stop_reason`` is ``failed``
        usage: Token usage summed over every provider call
        executions: Every tool execution of the run, in order
    """

    messages: list[Message]
    new_messages: list[Message] = field(default_factory=list)
    stop_reason: StopReason = StopReason.COMPLETED
    iteration: int = 0
    finish_reason: str | None = None
    error: CopilotRuntimeError | None = None
    usage: Usage = field(default_factory=Usage)
    executions: list[ToolExecution] = field(default_factory=list)
    run_id: str | None = None

    @property
    def content(self) -> str | None:
        """Text of the last assistant message produced by the run."""
        for message in reversed(self.new_messages):
            if message.role is Role.ASSISTANT:
                return message.content
        return None

    @property
    def natural_stop(self) -> bool:
        """True when the model finished on its own."""
        return self.stop_reason is StopReason.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stop_reason": self.stop_reason.value,
            "finish_reason": self.finish_reason,
            "iteration": self.iteration,
            "content": self.content,
            "messages": [m.to_dict() for m in self.messages],
            "new_messages": [m.to_dict() for m in self.new_messages],
            "usage": self.usage.to_dict(),
            "executions": [e.to_dict() for e in self.executions],
            "error": self.error.to_dict() if self.error else None,
        }


__all__ = ["StopReason", "RunStatus", "RunResult"]
