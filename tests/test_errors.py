"""
Tests for the error taxonomy.
"""
import asyncio

import pytest

from copilot_runtime.errors import (
    ApprovalRejectedError,
    AuthenticationError,
    CancellationError,
    CopilotRuntimeError,
    DuplicateToolCallError,
    ErrorCode,
    ErrorContext,
    InvalidConfigError,
    InvalidResponseError,
    IterationLimitError,
    MissingAPIKeyError,
    ModelNotFoundError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ToolArgumentError,
    ToolError,
    ToolNotFoundError,
    ToolTimeoutError,
    UnknownProviderError,
    error_from_status,
    is_retryable,
)


class TestCopilotRuntimeError:
    def test_str_includes_code(self):
        error = CopilotRuntimeError("Something broke")

        assert str(error) == "[ERR_9000] Something broke"

    def test_str_includes_run_id(self):
        error = CopilotRuntimeError("Something broke", context=ErrorContext(run_id="run-1"))

        assert str(error) == "[ERR_9000] Something broke (run_id=run-1)"

    def test_overrides(self):
        error = CopilotRuntimeError("x", code=ErrorCode.RUN_ERROR, retryable=True)

        assert error.code is ErrorCode.RUN_ERROR
        assert error.retryable is True

    def test_to_dict(self):
        cause = ValueError("root")
        error = RateLimitError(context=ErrorContext(provider="openai", iteration=2), cause=cause)

        data = error.to_dict()

        assert data["error_type"] == "RateLimitError"
        assert data["code"] == "ERR_1001"
        assert data["retryable"] is True
        assert data["cause"] == "root"
        assert data["context"]["provider"] == "openai"
        assert data["context"]["iteration"] == 2


class TestMessages:
    def test_tool_not_found(self):
        assert ToolNotFoundError(tool_name="launch").message == "Unknown tool: launch"

    def test_tool_timeout(self):
        error = ToolTimeoutError(timeout=2.5)

        assert error.message == "Tool execution timed out after 2.5s"
        assert error.retryable is True

    def test_approval_rejected(self):
        assert ApprovalRejectedError(reason="too risky").message == "Rejected by operator: too risky"
        assert ApprovalRejectedError().message == "Rejected by operator"

    def test_duplicate_tool_call(self):
        error = DuplicateToolCallError(call_id="call_1", tool_name="get_weather")

        assert error.message == "Duplicate call id: call_1"
        assert error.tool_name == "get_weather"

    def test_iteration_limit(self):
        assert IterationLimitError(max_iterations=3).message == "Maximum iterations reached (3)"

    def test_missing_api_key(self):
        error = MissingAPIKeyError(provider="openai", env_var="OPENAI_API_KEY")

        assert error.message == "API key not found (set OPENAI_API_KEY)"
        assert error.code is ErrorCode.MISSING_API_KEY

    def test_unknown_provider(self):
        error = UnknownProviderError("gemini", available=["openai", "anthropic"])

        assert error.message == "Unknown provider: 'gemini' (available: anthropic, openai)"

    def test_tool_argument_error_keeps_raw_text(self):
        error = ToolArgumentError("bad", raw_arguments="{oops", tool_name="t")

        assert error.raw_arguments == "{oops"
        assert isinstance(error, ToolError)


class TestHierarchy:
    def test_invalid_config_is_value_error(self):
        assert issubclass(InvalidConfigError, ValueError)

    def test_cancellation_is_runtime_error(self):
        assert isinstance(CancellationError(), CopilotRuntimeError)
        assert not issubclass(CancellationError, asyncio.CancelledError)


class TestErrorFromStatus:
    @pytest.mark.parametrize(
        "status, error_class",
        [
            (400, InvalidResponseError),
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, ModelNotFoundError),
            (429, RateLimitError),
            (500, InvalidResponseError),
            (502, ProviderUnavailableError),
            (503, ProviderUnavailableError),
            (504, ProviderTimeoutError),
            (None, ProviderUnavailableError),
            (0, ProviderUnavailableError),
        ],
    )
    def test_mapping(self, status, error_class):
        error = error_from_status(status, "upstream said no", provider="openai")

        assert type(error) is error_class
        assert error.message == "upstream said no"
        assert error.context.provider == "openai"

    def test_unmapped_status_keeps_code(self):
        error = error_from_status(529, "Overloaded")

        assert type(error) is ProviderError
        assert error.http_status == 529
        assert error.code is ErrorCode.PROVIDER_ERROR

    def test_explicit_context_wins(self):
        context = ErrorContext(run_id="run-7")

        assert error_from_status(503, "down", context=context).context is context


class TestIsRetryable:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (RateLimitError(), True),
            (ProviderUnavailableError(), True),
            (AuthenticationError(), False),
            (ToolNotFoundError(), False),
            (ConnectionError("reset"), True),
            (asyncio.TimeoutError(), True),
            (ValueError("nope"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected
