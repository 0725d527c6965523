"""
Agent loop orchestration.

This package runs the provider -> tool -> provider cycle, coordinating
tool approval and execution and reporting everything as a single ordered
event stream.
"""

from .core import AgentLoop, LoopState, run_agent_loop
from .execution import (
    ApprovalStatus,
    EventSink,
    ToolExecution,
    ToolExecutionCoordinator,
    ToolExecutionStatus,
)
from .result import RunResult, RunStatus, StopReason

__all__ = [
    "AgentLoop",
    "LoopState",
    "run_agent_loop",
    "RunResult",
    "RunStatus",
    "StopReason",
    "ToolExecution",
    "ToolExecutionStatus",
    "ApprovalStatus",
    "ToolExecutionCoordinator",
    "EventSink",
]
