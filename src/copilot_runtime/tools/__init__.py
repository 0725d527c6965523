"""
Tool system for agent function calling.

Provides tool definitions, the registry, the @tool decorator and
approval gating for tools that need an operator's go-ahead.
"""

from .approval import ApprovalChannel, ApprovalDecision, ApprovalMode, ApprovalPolicy
from .base import EMPTY_PARAMETERS, Tool, ToolRegistry, ToolResult, tool_from_function
from .decorators import tool

__all__ = [
    # Core
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "tool_from_function",
    "EMPTY_PARAMETERS",
    # Decorators
    "tool",
    # Approval
    "ApprovalMode",
    "ApprovalPolicy",
    "ApprovalDecision",
    "ApprovalChannel",
]
