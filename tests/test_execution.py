"""
Tests for the tool execution coordinator.
"""

import asyncio
import json

import pytest

from copilot_runtime.agent import ApprovalStatus, ToolExecution, ToolExecutionCoordinator, ToolExecutionStatus
from copilot_runtime.agent.execution import error_payload, serialize_tool_output
from copilot_runtime.cancellation import CancellationToken
from copilot_runtime.config import LoopConfig
from copilot_runtime.errors import ErrorCode, ToolExecutionError, ToolTimeoutError
from copilot_runtime.tools import ApprovalChannel, ApprovalPolicy, Tool, ToolResult
from copilot_runtime.types import Role, StreamEventType, ToolCall

from tests._testkit import approval_sink, make_slow_tool, make_weather_tool


def call(id: str, name: str, arguments: str = "{}") -> ToolCall:
    return ToolCall(id=id, name=name, arguments=arguments)


def make_tool(name: str, handler, **kwargs) -> Tool:
    return Tool(name=name, description=f"{name} tool", handler=handler, **kwargs)


class TestSerializeToolOutput:
    def test_strings_pass_through(self):
        assert serialize_tool_output("plain text") == "plain text"

    def test_structures_are_json(self):
        assert json.loads(serialize_tool_output({"a": [1, 2]})) == {"a": [1, 2]}

    def test_none(self):
        assert serialize_tool_output(None) == "null"

    def test_error_payload_includes_raw_arguments(self):
        from copilot_runtime.errors import ToolArgumentError

        payload = error_payload(ToolArgumentError("bad", raw_arguments="{oops"))

        assert payload["error"]["type"] == "ToolArgumentError"
        assert payload["error"]["code"] == ErrorCode.TOOL_ARGUMENT_ERROR.value
        assert payload["error"]["raw_arguments"] == "{oops"


class TestToolExecution:
    def test_from_call(self):
        execution = ToolExecution.from_call(call("c1", "get_weather", '{"city": "Paris"}'), iteration=2)

        assert execution.key == (2, "c1")
        assert execution.status is ToolExecutionStatus.PENDING
        assert not execution.is_terminal

    def test_complete_truncates_content(self):
        execution = ToolExecution.from_call(call("c1", "echo"), iteration=0)

        execution.complete("x" * 50, max_chars=10)

        assert execution.content == "x" * 10
        assert execution.truncated
        assert execution.result == "x" * 50

    def test_to_message(self):
        execution = ToolExecution.from_call(call("c1", "echo"), iteration=0)
        execution.complete({"ok": True})

        message = execution.to_message()

        assert message.role is Role.TOOL
        assert message.tool_call_id == "c1"
        assert message.name == "echo"
        assert json.loads(message.content) == {"ok": True}
        assert not message.is_error

    def test_failed_execution_message_is_flagged(self):
        execution = ToolExecution.from_call(call("c1", "echo"), iteration=0)
        execution.fail(ToolExecutionError("boom", tool_name="echo"))

        message = execution.to_message()

        assert message.is_error
        assert message.to_dict()["is_error"] is True


class TestExecuteRound:
    """Outcomes of one round of tool calls."""

    @pytest.mark.asyncio
    async def test_results_in_declaration_order(self):
        order = []

        async def slow():
            await asyncio.sleep(0.05)
            order.append("slow")
            return "slow"

        async def fast():
            order.append("fast")
            return "fast"

        coordinator = ToolExecutionCoordinator([make_tool("slow", slow), make_tool("fast", fast)])

        executions = await coordinator.execute_round([call("1", "slow"), call("2", "fast")], iteration=0)

        assert order == ["fast", "slow"]
        assert [e.id for e in executions] == ["1", "2"]
        assert [e.content for e in executions] == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_sequential_execution(self):
        order = []

        async def record(label: str):
            order.append(f"start {label}")
            await asyncio.sleep(0.01)
            order.append(f"end {label}")

        coordinator = ToolExecutionCoordinator(
            [make_tool("record", record)],
            config=LoopConfig(parallel_tool_execution=False),
        )

        await coordinator.execute_round(
            [call("1", "record", '{"label": "a"}'), call("2", "record", '{"label": "b"}')],
            iteration=0,
        )

        assert order == ["start a", "end a", "start b", "end b"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        coordinator = ToolExecutionCoordinator([make_weather_tool()])

        (execution,) = await coordinator.execute_round([call("c1", "launch_rockets")], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error_message == "Unknown tool: launch_rockets"
        assert json.loads(execution.content)["error"]["code"] == ErrorCode.TOOL_NOT_FOUND.value

    @pytest.mark.asyncio
    async def test_invalid_json_arguments_keep_raw_text(self):
        coordinator = ToolExecutionCoordinator([make_weather_tool()])

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"city": ')], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.args is None
        payload = json.loads(execution.content)["error"]
        assert payload["code"] == ErrorCode.TOOL_ARGUMENT_ERROR.value
        assert payload["raw_arguments"] == '{"city": '

    @pytest.mark.asyncio
    async def test_non_object_arguments(self):
        coordinator = ToolExecutionCoordinator([make_weather_tool()])

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", "[1, 2]")], iteration=0)

        assert "must be a JSON object" in execution.error_message

    @pytest.mark.asyncio
    async def test_empty_arguments_mean_no_arguments(self):
        async def ping():
            return "pong"

        coordinator = ToolExecutionCoordinator([make_tool("ping", ping)])

        (execution,) = await coordinator.execute_round([call("c1", "ping", "")], iteration=0)

        assert execution.succeeded
        assert execution.content == "pong"

    @pytest.mark.asyncio
    async def test_strict_tool_validates_arguments(self):
        weather = make_weather_tool()
        weather.strict = True
        coordinator = ToolExecutionCoordinator([weather])

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"town": "Paris"}')], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert "city" in execution.error_message
        assert json.loads(execution.content)["error"]["raw_arguments"] == '{"town": "Paris"}'

    @pytest.mark.asyncio
    async def test_validation_enabled_for_all_tools(self):
        coordinator = ToolExecutionCoordinator(
            [make_weather_tool()],
            config=LoopConfig(validate_tool_arguments=True),
        )

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"city": 5}')], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error["error"]["type"] == "ToolArgumentError"

    @pytest.mark.asyncio
    async def test_timeout(self):
        coordinator = ToolExecutionCoordinator(
            [make_slow_tool(delay=1.0)],
            config=LoopConfig(tool_timeout=0.05),
        )

        (execution,) = await coordinator.execute_round([call("c1", "slow_tool")], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error_message == "Tool execution timed out after 0.05s"
        assert execution.error["error"]["type"] == ToolTimeoutError.__name__

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_result(self):
        def explode():
            raise KeyError("missing")

        coordinator = ToolExecutionCoordinator([make_tool("explode", explode)])

        (execution,) = await coordinator.execute_round([call("c1", "explode")], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error_message.startswith("KeyError")
        assert execution.error["error"]["type"] == ToolExecutionError.__name__

    @pytest.mark.asyncio
    async def test_tool_result_failure(self):
        async def lookup():
            return ToolResult.error_result("record not found")

        coordinator = ToolExecutionCoordinator([make_tool("lookup", lookup)])

        (execution,) = await coordinator.execute_round([call("c1", "lookup")], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error_message == "record not found"

    @pytest.mark.asyncio
    async def test_tool_result_success_unwraps_content(self):
        async def lookup():
            return ToolResult.success_result({"id": 7})

        coordinator = ToolExecutionCoordinator([make_tool("lookup", lookup)])

        (execution,) = await coordinator.execute_round([call("c1", "lookup")], iteration=0)

        assert execution.result == {"id": 7}
        assert json.loads(execution.content) == {"id": 7}

    @pytest.mark.asyncio
    async def test_output_truncation(self):
        async def dump():
            return "y" * 100

        coordinator = ToolExecutionCoordinator([make_tool("dump", dump)], config=LoopConfig(max_tool_output_chars=20))

        (execution,) = await coordinator.execute_round([call("c1", "dump")], iteration=0)

        assert execution.truncated
        assert len(execution.to_message().content) == 20

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_others(self):
        def explode():
            raise RuntimeError("boom")

        coordinator = ToolExecutionCoordinator([make_tool("explode", explode), make_weather_tool()])

        failed, ok = await coordinator.execute_round(
            [call("c1", "explode"), call("c2", "get_weather", '{"city": "Rome"}')],
            iteration=0,
        )

        assert failed.status is ToolExecutionStatus.ERROR
        assert ok.succeeded

    @pytest.mark.asyncio
    async def test_duplicate_ids(self):
        coordinator = ToolExecutionCoordinator([make_weather_tool()])

        first, second = await coordinator.execute_round(
            [call("c1", "get_weather", '{"city": "A"}'), call("c1", "get_weather", '{"city": "B"}')],
            iteration=0,
        )

        assert first.succeeded
        assert second.error["error"]["code"] == ErrorCode.DUPLICATE_TOOL_CALL.value

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        coordinator = ToolExecutionCoordinator([make_weather_tool()])

        (execution,) = await coordinator.execute_round(
            [call("c1", "get_weather", '{"city": "A"}')],
            iteration=0,
            cancellation_token=token,
        )

        assert execution.error_message == "Cancelled"
        assert execution.started_at is None

    @pytest.mark.asyncio
    async def test_state_transitions_are_published(self):
        events = []
        coordinator = ToolExecutionCoordinator([make_weather_tool()], emit=events.append)

        await coordinator.execute_round([call("c1", "get_weather", '{"city": "A"}')], iteration=3)

        assert all(e.type is StreamEventType.TOOL_EXECUTION for e in events)
        assert [e.data["status"] for e in events] == ["pending", "executing", "completed"]
        assert events[-1].data["iteration"] == 3
        assert events[-1].data["result"]["city"] == "A"


class TestApprovalGate:
    """Approval handling inside the coordinator."""

    def coordinator(self, approvals: ApprovalChannel, emit=None, **config) -> ToolExecutionCoordinator:
        return ToolExecutionCoordinator(
            [make_weather_tool()],
            policy=ApprovalPolicy.manual("get_weather"),
            approvals=approvals,
            config=LoopConfig(**config),
            emit=emit,
        )

    @pytest.mark.asyncio
    async def test_waits_for_approval(self):
        approvals = ApprovalChannel()
        coordinator = self.coordinator(approvals)

        task = asyncio.create_task(
            coordinator.execute_round([call("c1", "get_weather", '{"city": "A"}')], iteration=0)
        )
        while "c1" not in approvals.pending:
            await asyncio.sleep(0)
        assert not task.done()

        assert approvals.approve("c1") is True
        (execution,) = await task

        assert execution.succeeded
        assert execution.approval_status is ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_rejection(self):
        approvals = ApprovalChannel()
        coordinator = self.coordinator(approvals, emit=approval_sink(approvals, reject={"c1": "too risky"}))

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"city": "A"}')], iteration=0)

        assert execution.approval_status is ApprovalStatus.REJECTED
        assert execution.error_message == "Rejected by operator: too risky"
        assert execution.started_at is None

    @pytest.mark.asyncio
    async def test_approval_timeout_rejects(self):
        coordinator = self.coordinator(ApprovalChannel(), approval_timeout=0.05)

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"city": "A"}')], iteration=0)

        assert execution.approval_status is ApprovalStatus.REJECTED
        assert execution.error_message == "Rejected by operator: approval timed out"

    @pytest.mark.asyncio
    async def test_invalid_arguments_fail_before_approval(self):
        approvals = ApprovalChannel()
        coordinator = self.coordinator(approvals)

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", "{bad")], iteration=0)

        assert execution.approval_status is ApprovalStatus.NOT_REQUIRED
        assert approvals.pending == []

    @pytest.mark.parametrize("approve_first", [True, False])
    @pytest.mark.asyncio
    async def test_parallel_approvals_are_independent(self, approve_first):
        approvals = ApprovalChannel()
        coordinator = self.coordinator(approvals)

        task = asyncio.create_task(
            coordinator.execute_round(
                [call("c1", "get_weather", '{"city": "A"}'), call("c2", "get_weather", '{"city": "B"}')],
                iteration=0,
            )
        )
        while len(approvals.pending) < 2:
            await asyncio.sleep(0)

        approved, rejected = ("c1", "c2") if approve_first else ("c2", "c1")
        approvals.approve(approved)
        approvals.reject(rejected)
        executions = {e.id: e for e in await task}

        assert executions[approved].succeeded
        assert executions[rejected].approval_status is ApprovalStatus.REJECTED

    @pytest.mark.asyncio
    async def test_id_already_awaiting_approval_fails_loudly(self):
        approvals = ApprovalChannel()
        approvals.register("c1")
        coordinator = self.coordinator(approvals)

        (execution,) = await coordinator.execute_round([call("c1", "get_weather", '{"city": "A"}')], iteration=0)

        assert execution.status is ToolExecutionStatus.ERROR
        assert execution.error["error"]["code"] == ErrorCode.DUPLICATE_TOOL_CALL.value
        assert execution.started_at is None
        # The other holder of the id keeps its slot
        assert approvals.pending == ["c1"]

    @pytest.mark.asyncio
    async def test_slot_released_after_each_outcome(self):
        approvals = ApprovalChannel()
        coordinator = self.coordinator(approvals, emit=approval_sink(approvals, approve=["c1"]), approval_timeout=0.05)

        await coordinator.execute_round(
            [call("c1", "get_weather", '{"city": "A"}'), call("c2", "get_weather", '{"city": "B"}')],
            iteration=0,
        )

        assert approvals.pending == []
        assert approvals.approve("c1") is False
        assert approvals.approve("c2") is False
