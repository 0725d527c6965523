"""
Tests for structured logging.
"""
import io
import json
import logging
import uuid

from copilot_runtime.errors import ErrorContext, RateLimitError
from copilot_runtime.logging import (
    LogContext,
    RunLog,
    StructuredLogger,
    Timer,
    ToolExecutionLog,
    configure_logging,
    generate_run_id,
    generate_trace_id,
    get_logger,
    redact_api_key,
    timed,
    truncate_for_log,
)


def make_logger(json_output: bool = True, level: str = "DEBUG") -> tuple[StructuredLogger, io.StringIO]:
    stream = io.StringIO()
    logger = StructuredLogger(f"copilot_runtime.test.{uuid.uuid4().hex[:8]}", level=level, json_output=json_output, stream=stream)
    return logger, stream


def json_lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestLogContext:
    def test_to_dict_drops_empty_fields(self):
        context = LogContext(run_id="run_1", provider="openai", extra={"tenant": "acme"})

        assert context.to_dict() == {"run_id": "run_1", "provider": "openai", "tenant": "acme"}

    def test_with_update(self):
        context = LogContext(run_id="run_1", extra={"a": 1})

        updated = context.with_update(model="gpt-4o", extra={"b": 2})

        assert updated.run_id == "run_1"
        assert updated.model == "gpt-4o"
        assert updated.extra == {"a": 1, "b": 2}
        assert context.model is None


class TestLogRecords:
    def test_run_log(self):
        record = RunLog(run_id="run_1", provider="anthropic", stop_reason="completed", iteration=2, total_tokens=40)

        data = record.to_dict()

        assert data["stop_reason"] == "completed"
        assert data["iteration"] == 2
        assert "error" not in data
        assert "duration_ms" not in data

    def test_tool_execution_log(self):
        record = ToolExecutionLog(run_id=None, tool_name="get_weather", tool_call_id="c1", iteration=0, status="error")

        assert not record.success
        assert "run_id" not in record.to_dict()


class TestStructuredLogger:
    def test_json_output_includes_context(self):
        logger, stream = make_logger()

        with logger.trace_context(trace_id="trace_abc", run_id="run_9") as trace_id:
            logger.info("Run started", max_iterations=3)

        (line,) = json_lines(stream)
        assert trace_id == "trace_abc"
        assert line["message"] == "Run started"
        assert line["level"] == "INFO"
        assert line["trace_id"] == "trace_abc"
        assert line["run_id"] == "run_9"
        assert line["max_iterations"] == 3

    def test_trace_context_resets(self):
        logger, _ = make_logger()

        with logger.trace_context(run_id="run_1"):
            assert logger.context.run_id == "run_1"

        assert logger.context.run_id is None

    def test_text_output(self):
        logger, stream = make_logger(json_output=False)

        logger.warning("Provider error", status=503)

        output = stream.getvalue()
        assert "WARNING" in output
        assert "Provider error status=503" in output

    def test_level_filtering(self):
        logger, stream = make_logger(level="WARNING")

        logger.debug("hidden")
        logger.info("hidden")
        logger.error("shown")

        assert [line["message"] for line in json_lines(stream)] == ["shown"]

    def test_log_run(self):
        logger, stream = make_logger()

        logger.log_run(RunLog(run_id="run_1", provider="openai", stop_reason="failed", duration_ms=12.4))

        (line,) = json_lines(stream)
        assert line["level"] == "WARNING"
        assert line["event_type"] == "run"
        assert line["message"] == "Agent run run_1 finished: failed (12ms)"

    def test_log_tool_execution(self):
        logger, stream = make_logger()

        logger.log_tool_execution(
            ToolExecutionLog(run_id="run_1", tool_name="get_weather", tool_call_id="c1", iteration=0)
        )

        (line,) = json_lines(stream)
        assert line["level"] == "INFO"
        assert line["message"] == "Tool 'get_weather' completed"
        assert line["tool_call_id"] == "c1"

    def test_log_error(self):
        logger, stream = make_logger()

        logger.log_error(RateLimitError(context=ErrorContext(provider="openai")), attempt=2)

        (line,) = json_lines(stream)
        assert line["error_type"] == "RateLimitError"
        assert line["error_code"] == "ERR_1001"
        assert line["retryable"] is True
        assert line["error_context"]["provider"] == "openai"
        assert line["attempt"] == 2

    def test_exception_includes_traceback(self):
        logger, stream = make_logger()

        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("Unexpected failure")

        (line,) = json_lines(stream)
        assert "ValueError: boom" in line["exception"]


class TestGlobalLogger:
    def test_get_logger_is_cached(self):
        assert get_logger() is get_logger()

    def test_configure_logging_replaces_handlers(self):
        name = f"copilot_runtime.test.{uuid.uuid4().hex[:8]}"
        first = configure_logging(name=name, stream=io.StringIO())
        stream = io.StringIO()

        second = configure_logging(level="ERROR", json_output=False, name=name, stream=stream)
        second.error("only once")

        assert first is not second
        assert len(logging.getLogger(name).handlers) == 1
        assert stream.getvalue().count("only once") == 1


class TestTimer:
    def test_timer(self):
        timer = Timer()

        elapsed = timer.stop()

        assert elapsed >= 0
        assert timer.elapsed_ms == elapsed

    def test_timed(self):
        with timed() as timer:
            pass

        assert timer.end_time is not None


class TestUtilities:
    def test_ids(self):
        assert generate_trace_id().startswith("trace_")
        assert generate_run_id().startswith("run_")
        assert generate_run_id() != generate_run_id()

    def test_redact_api_key(self):
        assert redact_api_key(None) == "<not set>"
        assert redact_api_key("short") == "***"
        assert redact_api_key("sk-1234567890abcd") == "sk-1...abcd"

    def test_truncate_for_log(self):
        assert truncate_for_log("short") == "short"
        assert truncate_for_log("x" * 300, max_length=10) == "x" * 10 + "... (300 chars total)"
