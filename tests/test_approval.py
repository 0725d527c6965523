"""
Tests for approval policies and the approval channel.
"""

import asyncio

import pytest

from copilot_runtime.cancellation import CancellationToken
from copilot_runtime.errors import CancellationError, DuplicateToolCallError
from copilot_runtime.tools import ApprovalChannel, ApprovalMode, ApprovalPolicy


class TestApprovalPolicy:
    def test_default_is_auto(self):
        policy = ApprovalPolicy()

        assert not policy.requires_approval("anything")

    def test_manual_for_named_tools(self):
        policy = ApprovalPolicy.manual("delete_file", "send_email")

        assert policy.requires_approval("delete_file")
        assert policy.requires_approval("send_email")
        assert not policy.requires_approval("get_weather")

    def test_manual_for_everything(self):
        policy = ApprovalPolicy.manual()

        assert policy.requires_approval("get_weather")

    def test_from_mapping_accepts_strings(self):
        policy = ApprovalPolicy.from_mapping({"get_weather": "auto"}, default="manual")

        assert policy.mode_for("get_weather") is ApprovalMode.AUTO
        assert policy.mode_for("other") is ApprovalMode.MANUAL

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValueError):
            ApprovalPolicy.from_mapping({"x": "sometimes"})


class TestApprovalChannel:
    @pytest.mark.asyncio
    async def test_approve_waiting_execution(self):
        channel = ApprovalChannel()
        waiter = asyncio.create_task(channel.wait("c1"))
        await asyncio.sleep(0)

        assert channel.pending == ["c1"]
        assert channel.approve("c1") is True

        decision = await waiter
        assert decision.approved
        assert channel.pending == []

    @pytest.mark.asyncio
    async def test_reject_with_reason(self):
        channel = ApprovalChannel()
        waiter = asyncio.create_task(channel.wait("c1"))
        await asyncio.sleep(0)

        channel.reject("c1", "not now")
        decision = await waiter

        assert not decision.approved
        assert decision.reason == "not now"

    @pytest.mark.asyncio
    async def test_decision_between_register_and_wait_is_kept(self):
        channel = ApprovalChannel()
        channel.register("c1")

        assert channel.approve("c1") is True

        decision = await channel.wait("c1")
        assert decision.approved
        assert channel.pending == []

    @pytest.mark.asyncio
    async def test_decision_for_unknown_execution_is_dropped(self):
        channel = ApprovalChannel()

        assert channel.approve("c1") is False

        with pytest.raises(asyncio.TimeoutError):
            await channel.wait("c1", timeout=0.01)

    @pytest.mark.asyncio
    async def test_decision_after_timeout_does_not_reach_next_wait(self):
        channel = ApprovalChannel()
        with pytest.raises(asyncio.TimeoutError):
            await channel.wait("c1", timeout=0.01)

        assert channel.reject("c1", "too late") is False

        waiter = asyncio.create_task(channel.wait("c1"))
        await asyncio.sleep(0)
        channel.approve("c1")
        assert (await waiter).approved

    @pytest.mark.asyncio
    async def test_second_decision_is_ignored(self):
        channel = ApprovalChannel()
        channel.register("c1")

        assert channel.reject("c1", "no") is True
        assert channel.approve("c1") is False
        assert not (await channel.wait("c1")).approved

    @pytest.mark.asyncio
    async def test_register_twice_fails(self):
        channel = ApprovalChannel()
        channel.register("c1")

        with pytest.raises(DuplicateToolCallError, match="Duplicate call id: c1"):
            channel.register("c1")

    @pytest.mark.asyncio
    async def test_second_waiter_for_live_id_fails(self):
        channel = ApprovalChannel()
        first = asyncio.create_task(channel.wait("c1"))
        await asyncio.sleep(0)

        with pytest.raises(DuplicateToolCallError):
            await channel.wait("c1")

        assert channel.approve("c1") is True
        assert (await first).approved

    @pytest.mark.asyncio
    async def test_release_drops_slot(self):
        channel = ApprovalChannel()
        channel.register("c1")

        channel.release("c1")

        assert channel.pending == []
        assert channel.approve("c1") is False

    @pytest.mark.asyncio
    async def test_decisions_are_per_execution(self):
        channel = ApprovalChannel()
        first = asyncio.create_task(channel.wait("c1"))
        second = asyncio.create_task(channel.wait("c2"))
        await asyncio.sleep(0)

        channel.reject("c2")
        channel.approve("c1")

        assert (await first).approved
        assert not (await second).approved

    @pytest.mark.asyncio
    async def test_cancellation_stops_waiting(self):
        channel = ApprovalChannel()
        token = CancellationToken()
        waiter = asyncio.create_task(channel.wait("c1", cancellation_token=token))
        await asyncio.sleep(0)

        token.cancel()

        with pytest.raises(CancellationError):
            await waiter
        assert channel.pending == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        channel = ApprovalChannel()

        with pytest.raises(asyncio.TimeoutError):
            await channel.wait("c1", timeout=0.01)
        assert channel.pending == []
