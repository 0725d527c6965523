"""
Structured logging for copilot-runtime.

This module provides:
- Structured JSON (or text) logging with consistent fields
- Run-scoped context (run id, provider, model) carried across awaits
- Typed records for agent runs, provider turns and tool executions
- Timing helpers
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Log Record Types
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    run_id: str | None = None
    provider: str | None = None
    model: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            run_id=kwargs.get("run_id", self.run_id),
            provider=kwargs.get("provider", self.provider),
            model=kwargs.get("model", self.model),
            operation=kwargs.get("operation", self.operation),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


@dataclass
class RunLog:
    """Log record for one agent loop run."""

    run_id: str
    provider: str
    model: str | None = None

    timestamp: str = field(default_factory=_utcnow)
    duration_ms: float | None = None

    stop_reason: str | None = None
    iteration: int = 0
    max_iterations: int | None = None
    message_count: int = 0
    tool_execution_count: int = 0

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ToolExecutionLog:
    """Log record for a tool execution."""

    run_id: str | None
    tool_name: str
    tool_call_id: str
    iteration: int

    timestamp: str = field(default_factory=_utcnow)
    duration_ms: float | None = None

    status: str = "completed"
    approval_status: str | None = None
    error: str | None = None

    # Truncated output preview
    output_preview: str | None = None
    output_length: int = 0

    @property
    def success(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# =============================================================================
# Structured Logger
# =============================================================================

_current_context: ContextVar[LogContext] = ContextVar("copilot_runtime_log_context", default=LogContext())


class StructuredLogger:
    """
    Logger with structured JSON output and context tracking.

    The context lives in a ContextVar, so concurrent runs sharing one
    logger each see their own run id.

    Example:
        ```python
        logger = get_logger()

        with logger.trace_context(run_id="run_123", provider="openai"):
            logger.info("Run started", max_iterations=10)
        ```
    """

    def __init__(
        self,
        name: str = "copilot_runtime",
        level: str = "INFO",
        json_output: bool = True,
        stream: Any = None,
        log_file: str | Path | None = None,
    ):
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper()))

        if not self._logger.handlers:
            if log_file is not None:
                handler: logging.Handler = logging.FileHandler(log_file)
            else:
                handler = logging.StreamHandler(stream or sys.stdout)
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
            self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def context(self) -> LogContext:
        return _current_context.get()

    def set_context(self, **kwargs) -> None:
        """Update the current log context."""
        _current_context.set(self.context.with_update(**kwargs))

    @contextmanager
    def trace_context(
        self,
        trace_id: str | None = None,
        **kwargs,
    ) -> Iterator[str]:
        """
        Context manager for trace correlation.

        Args:
            trace_id: Trace ID (auto-generated if not provided)
            **kwargs: Additional context fields

        Yields:
            The trace ID
        """
        trace_id = trace_id or generate_trace_id()
        token = _current_context.set(self.context.with_update(trace_id=trace_id, **kwargs))
        try:
            yield trace_id
        finally:
            _current_context.reset(token)

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        record_data = {
            "message": message,
            **self.context.to_dict(),
        }
        if event_type:
            record_data["event_type"] = event_type
        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str), exc_info=exc_info)
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip(), exc_info=exc_info)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def exception(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs, exc_info=True)

    # Typed logging methods

    def log_run(self, run: RunLog) -> None:
        """Log the outcome of an agent run."""
        level = logging.WARNING if run.stop_reason == "failed" else logging.INFO
        message = f"Agent run {run.run_id} finished: {run.stop_reason}"
        if run.duration_ms is not None:
            message += f" ({run.duration_ms:.0f}ms)"
        self._log(level, message, event_type="run", data=run.to_dict())

    def log_tool_execution(self, tool_log: ToolExecutionLog) -> None:
        """Log a terminal tool execution."""
        level = logging.INFO if tool_log.success else logging.WARNING
        message = f"Tool '{tool_log.tool_name}' {tool_log.status}"
        self._log(level, message, event_type="tool_execution", data=tool_log.to_dict())

    def log_error(
        self,
        error: Exception,
        message: str | None = None,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        if hasattr(error, "code") and hasattr(error.code, "value"):
            error_data["error_code"] = str(error.code.value)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable
        if getattr(error, "context", None) is not None and hasattr(error.context, "to_dict"):
            error_data["error_context"] = error.context.to_dict()

        self._log(
            logging.ERROR,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _utcnow(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
        except (json.JSONDecodeError, TypeError):
            message_data = None
        if isinstance(message_data, dict):
            log_data.update(message_data)
        else:
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        text = f"{timestamp} {color}{record.levelname:8}{reset} {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    """Generate a unique trace ID."""
    return f"trace_{uuid.uuid4().hex[:16]}"


def generate_run_id() -> str:
    """Generate a unique agent run ID."""
    return f"run_{uuid.uuid4().hex[:12]}"


def redact_api_key(key: str | None) -> str:
    """Redact an API key for safe logging."""
    if not key:
        return "<not set>"
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    """Truncate text for logging."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... ({len(text)} chars total)"


@dataclass
class Timer:
    """Simple timer for measuring durations."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        """Stop the timer and return duration in milliseconds."""
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    """Context manager for timing operations."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


# =============================================================================
# Global Logger
# =============================================================================

_default_logger: StructuredLogger | None = None


def get_logger(name: str = "copilot_runtime") -> StructuredLogger:
    """Get or create a structured logger."""
    global _default_logger
    if _default_logger is None or _default_logger.name != name:
        _default_logger = StructuredLogger(name)
    return _default_logger


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    **kwargs: Any,
) -> StructuredLogger:
    """Configure the default logger, replacing any handlers it already has."""
    global _default_logger
    name = kwargs.get("name", "copilot_runtime")
    for handler in list(logging.getLogger(name).handlers):
        logging.getLogger(name).removeHandler(handler)
        handler.close()
    _default_logger = StructuredLogger(
        level=level,
        json_output=json_output,
        **kwargs,
    )
    return _default_logger


__all__ = [
    "LogContext",
    "RunLog",
    "ToolExecutionLog",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "Timer",
    "timed",
    "generate_trace_id",
    "generate_run_id",
    "redact_api_key",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
