"""
Error taxonomy for copilot-runtime.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging
- Mapping from provider HTTP status codes

Tool-level errors never escape a run: the tool execution coordinator
absorbs them into tool-result messages. Provider errors are what turn a
run into ``failed``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the runtime."""

    # Provider errors (1xxx)
    PROVIDER_ERROR = "ERR_1000"
    RATE_LIMIT = "ERR_1001"
    AUTHENTICATION = "ERR_1002"
    MODEL_NOT_FOUND = "ERR_1004"
    PROVIDER_UNAVAILABLE = "ERR_1007"
    PROVIDER_TIMEOUT = "ERR_1008"
    INVALID_RESPONSE = "ERR_1009"

    # Tool errors (4xxx)
    TOOL_ERROR = "ERR_4000"
    TOOL_NOT_FOUND = "ERR_4001"
    TOOL_EXECUTION_ERROR = "ERR_4002"
    TOOL_TIMEOUT = "ERR_4003"
    TOOL_ARGUMENT_ERROR = "ERR_4004"
    APPROVAL_REJECTED = "ERR_4005"
    DUPLICATE_TOOL_CALL = "ERR_4006"

    # Run errors (5xxx)
    RUN_ERROR = "ERR_5000"
    ITERATION_LIMIT = "ERR_5001"
    CANCELLED = "ERR_5003"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "ERR_6000"
    MISSING_API_KEY = "ERR_6001"
    INVALID_CONFIG = "ERR_6002"
    UNKNOWN_PROVIDER = "ERR_6003"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    run_id: str | None = None
    provider: str | None = None
    model: str | None = None
    iteration: int | None = None
    attempt: int = 1
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "provider": self.provider,
            "model": self.model,
            "iteration": self.iteration,
            "attempt": self.attempt,
            "operation": self.operation,
            **self.extra,
        }


class CopilotRuntimeError(Exception):
    """
    Base exception for all runtime errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.run_id:
            parts.append(f"(run_id={self.context.run_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(CopilotRuntimeError):
    """Upstream model provider was unreachable or answered with garbage."""

    code = ErrorCode.PROVIDER_ERROR
    retryable = False
    http_status: int | None = None

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.http_status = http_status


class RateLimitError(ProviderError):
    """Rate limit exceeded. Operation can be retried after a delay."""

    code = ErrorCode.RATE_LIMIT
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, http_status=429, **kwargs)
        self.retry_after = retry_after


class AuthenticationError(ProviderError):
    """Invalid or missing API key. Not retryable."""

    code = ErrorCode.AUTHENTICATION

    def __init__(
        self,
        message: str = "Authentication failed. Check your API key.",
        **kwargs,
    ):
        super().__init__(message, http_status=401, **kwargs)


class ModelNotFoundError(ProviderError):
    code = ErrorCode.MODEL_NOT_FOUND

    def __init__(self, message: str = "Model not found", **kwargs):
        super().__init__(message, http_status=404, **kwargs)


class ProviderUnavailableError(ProviderError):
    """Provider service is temporarily unavailable. Retryable."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True

    def __init__(
        self,
        message: str = "Provider service unavailable",
        **kwargs,
    ):
        super().__init__(message, http_status=503, **kwargs)


class ProviderTimeoutError(ProviderError):
    """Request to provider timed out. Retryable."""

    code = ErrorCode.PROVIDER_TIMEOUT
    retryable = True

    def __init__(
        self,
        message: str = "Request timed out",
        *,
        timeout: float | None = None,
        **kwargs,
    ):
        super().__init__(message, http_status=504, **kwargs)
        self.timeout = timeout


class InvalidResponseError(ProviderError):
    """Provider returned an invalid or unexpected response."""

    code = ErrorCode.INVALID_RESPONSE
    retryable = True

    def __init__(
        self,
        message: str = "Invalid response from provider",
        **kwargs,
    ):
        super().__init__(message, http_status=500, **kwargs)


# =============================================================================
# Tool Errors
# =============================================================================


class ToolError(CopilotRuntimeError):
    """Base class for tool-related errors."""

    code = ErrorCode.TOOL_ERROR
    retryable = False

    def __init__(
        self,
        message: str = "Tool error",
        *,
        tool_name: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Requested tool is not registered."""

    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(
        self,
        message: str = "Unknown tool",
        *,
        tool_name: str | None = None,
        **kwargs,
    ):
        if tool_name:
            message = f"Unknown tool: {tool_name}"
        super().__init__(message, tool_name=tool_name, **kwargs)


class ToolArgumentError(ToolError):
    """Tool arguments could not be parsed or failed validation.

    The unparsed argument text is kept on ``raw_arguments``.
    """

    code = ErrorCode.TOOL_ARGUMENT_ERROR

    def __init__(
        self,
        message: str = "Invalid tool arguments",
        *,
        raw_arguments: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.raw_arguments = raw_arguments


class ToolExecutionError(ToolError):
    """Tool handler raised."""

    code = ErrorCode.TOOL_EXECUTION_ERROR


class ToolTimeoutError(ToolExecutionError):
    """Tool execution exceeded its deadline."""

    code = ErrorCode.TOOL_TIMEOUT
    retryable = True

    def __init__(
        self,
        message: str = "Tool execution timed out",
        *,
        timeout: float | None = None,
        **kwargs,
    ):
        if timeout is not None and message == "Tool execution timed out":
            message = f"Tool execution timed out after {timeout}s"
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ApprovalRejectedError(ToolError):
    """An operator rejected a tool execution that required approval."""

    code = ErrorCode.APPROVAL_REJECTED

    def __init__(
        self,
        message: str = "Rejected by operator",
        *,
        reason: str | None = None,
        **kwargs,
    ):
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, **kwargs)
        self.reason = reason


class DuplicateToolCallError(ToolError):
    """A tool call id was repeated within one assistant turn, or is already awaiting approval."""

    code = ErrorCode.DUPLICATE_TOOL_CALL

    def __init__(
        self,
        message: str = "Duplicate call id",
        *,
        call_id: str | None = None,
        **kwargs,
    ):
        if call_id:
            message = f"Duplicate call id: {call_id}"
        super().__init__(message, **kwargs)
        self.call_id = call_id


# =============================================================================
# Run Errors
# =============================================================================


class CancellationError(CopilotRuntimeError):
    """Cooperative stop requested through a CancellationToken."""

    code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Operation was cancelled", **kwargs):
        super().__init__(message, **kwargs)


class IterationLimitError(CopilotRuntimeError):
    """The loop hit its iteration cap. Surfaced on results, never raised by the loop."""

    code = ErrorCode.ITERATION_LIMIT

    def __init__(
        self,
        message: str = "Maximum iterations reached",
        *,
        max_iterations: int | None = None,
        **kwargs,
    ):
        if max_iterations is not None:
            message = f"Maximum iterations reached ({max_iterations})"
        super().__init__(message, **kwargs)
        self.max_iterations = max_iterations


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(CopilotRuntimeError):
    """Base class for configuration errors."""

    code = ErrorCode.CONFIG_ERROR


class MissingAPIKeyError(ConfigError):
    """Required API key is not set."""

    code = ErrorCode.MISSING_API_KEY

    def __init__(
        self,
        message: str = "API key not found",
        *,
        provider: str | None = None,
        env_var: str | None = None,
        **kwargs,
    ):
        if env_var:
            message = f"{message} (set {env_var})"
        super().__init__(message, **kwargs)
        self.provider = provider
        self.env_var = env_var


class InvalidConfigError(ConfigError, ValueError):
    """Configuration is invalid. Also a ValueError for callers validating input."""

    code = ErrorCode.INVALID_CONFIG


class UnknownProviderError(ConfigError):
    code = ErrorCode.UNKNOWN_PROVIDER

    def __init__(self, name: str, *, available: list[str] | None = None, **kwargs):
        message = f"Unknown provider: {name!r}"
        if available:
            message += f" (available: {', '.join(sorted(available))})"
        super().__init__(message, **kwargs)
        self.name = name


# =============================================================================
# Error Mapping from HTTP Status Codes
# =============================================================================


def error_from_status(
    status: int | None,
    message: str,
    *,
    provider: str | None = None,
    context: ErrorContext | None = None,
) -> ProviderError:
    """
    Create an appropriate ProviderError from an HTTP status code.

    Args:
        status: HTTP status code (``None`` or 0 for transport failures)
        message: Error message from the provider
        provider: Provider name for context
        context: Additional error context

    Returns:
        Appropriate ProviderError subclass
    """
    ctx = context or ErrorContext(provider=provider)

    error_map: dict[int, type[ProviderError]] = {
        400: InvalidResponseError,
        401: AuthenticationError,
        403: AuthenticationError,
        404: ModelNotFoundError,
        429: RateLimitError,
        500: InvalidResponseError,
        502: ProviderUnavailableError,
        503: ProviderUnavailableError,
        504: ProviderTimeoutError,
    }

    if not status:
        return ProviderUnavailableError(message, context=ctx)
    error_class = error_map.get(status)
    if error_class is None:
        return ProviderError(message, http_status=status, context=ctx)
    return error_class(message, context=ctx)


def is_retryable(error: Exception) -> bool:
    """
    Check if an error is retryable.

    Args:
        error: Exception to check

    Returns:
        True if the error is retryable
    """
    if isinstance(error, CopilotRuntimeError):
        return error.retryable

    retryable_types = (
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


__all__ = [
    # Base
    "ErrorCode",
    "ErrorContext",
    "CopilotRuntimeError",
    # Provider errors
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "ModelNotFoundError",
    "ProviderUnavailableError",
    "ProviderTimeoutError",
    "InvalidResponseError",
    # Tool errors
    "ToolError",
    "ToolNotFoundError",
    "ToolArgumentError",
    "ToolExecutionError",
    "ToolTimeoutError",
    "ApprovalRejectedError",
    "DuplicateToolCallError",
    # Run errors
    "CancellationError",
    "IterationLimitError",
    # Config errors
    "ConfigError",
    "MissingAPIKeyError",
    "InvalidConfigError",
    "UnknownProviderError",
    # Utilities
    "error_from_status",
    "is_retryable",
]
