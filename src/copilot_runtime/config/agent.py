"""
Agent loop configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import InvalidConfigError
from .base import ApprovalModeName, KnowledgeInjection

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TOOL_TIMEOUT = 30.0


@dataclass
class LoopConfig:
    """Per-run configuration for the agent loop.

    Passed explicitly into every run so concurrent runs with different
    policies never share mutable defaults.
    """

    # Iteration cap; 0 means "never execute tools"
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    # Tool execution
    parallel_tool_execution: bool = True
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    max_tool_output_chars: int | None = None
    # Strict tools are always validated; this extends validation to every tool
    validate_tool_arguments: bool = False

    # Approval
    default_approval: ApprovalModeName = "auto"
    approval_policy: dict[str, ApprovalModeName] = field(default_factory=dict)
    approval_timeout: float | None = None

    # Provider retries; only attempted when nothing was streamed yet
    provider_retries: int = 0
    provider_retry_backoff: float = 1.0

    # Knowledge augmentation
    knowledge_injection: KnowledgeInjection = "system_prompt"

    # Bounded event channel used by AgentLoop.stream()
    channel_size: int = 256

    def __post_init__(self):
        if self.max_iterations < 0:
            raise InvalidConfigError("max_iterations cannot be negative")
        if self.tool_timeout <= 0:
            raise InvalidConfigError("tool_timeout must be positive")
        if self.max_tool_output_chars is not None and self.max_tool_output_chars < 1:
            raise InvalidConfigError("max_tool_output_chars must be at least 1")
        if self.default_approval not in ("auto", "manual"):
            raise InvalidConfigError(f"Invalid approval mode: {self.default_approval}")
        for name, mode in self.approval_policy.items():
            if mode not in ("auto", "manual"):
                raise InvalidConfigError(f"Invalid approval mode for tool {name!r}: {mode}")
        if self.approval_timeout is not None and self.approval_timeout <= 0:
            raise InvalidConfigError("approval_timeout must be positive")
        if self.provider_retries < 0:
            raise InvalidConfigError("provider_retries cannot be negative")
        if self.provider_retry_backoff < 0:
            raise InvalidConfigError("provider_retry_backoff cannot be negative")
        if self.knowledge_injection not in ("system_prompt", "leading_message"):
            raise InvalidConfigError(f"Invalid knowledge_injection: {self.knowledge_injection}")
        if self.channel_size < 1:
            raise InvalidConfigError("channel_size must be at least 1")


__all__ = ["LoopConfig", "DEFAULT_MAX_ITERATIONS", "DEFAULT_TOOL_TIMEOUT"]
