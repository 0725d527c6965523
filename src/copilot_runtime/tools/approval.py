"""
Human approval gating for tool executions.

An ApprovalPolicy decides, per tool name, whether a call runs right away
(``auto``) or waits for an operator (``manual``). Manual executions park
on the ApprovalChannel until ``approve()`` or ``reject()`` is called for
their execution id, which is the provider-assigned tool call id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from ..cancellation import CancellationToken
from ..errors import DuplicateToolCallError

logger = logging.getLogger("copilot_runtime.approval")


class ApprovalMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass
class ApprovalPolicy:
    """Maps tool names to approval modes, with a fallback for unlisted tools."""

    tools: dict[str, ApprovalMode] = field(default_factory=dict)
    default: ApprovalMode = ApprovalMode.AUTO

    def __post_init__(self):
        self.default = ApprovalMode(self.default)
        self.tools = {name: ApprovalMode(mode) for name, mode in self.tools.items()}

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, ApprovalMode | str] | None,
        default: ApprovalMode | str = ApprovalMode.AUTO,
    ) -> ApprovalPolicy:
        return cls(tools=dict(mapping or {}), default=default)  # type: ignore[arg-type]

    @classmethod
    def manual(cls, *names: str) -> ApprovalPolicy:
        """Policy requiring approval for ``names`` (or for every tool when none given)."""
        if not names:
            return cls(default=ApprovalMode.MANUAL)
        return cls(tools={name: ApprovalMode.MANUAL for name in names})

    def mode_for(self, tool_name: str) -> ApprovalMode:
        return self.tools.get(tool_name, self.default)

    def requires_approval(self, tool_name: str) -> bool:
        return self.mode_for(tool_name) is ApprovalMode.MANUAL


@dataclass(frozen=True)
class ApprovalDecision:
    approved: bool
    reason: str | None = None


class ApprovalChannel:
    """
    Rendezvous between waiting tool executions and an operator.

    An execution registers its id before announcing that it awaits approval
    and releases it once it stops waiting. Decisions are accepted only while
    the id is registered; anything else is logged and dropped, so a late
    decision can never approve a later execution that reuses the id.

    Example:
        ```python
        approvals = ApprovalChannel()

        # From the UI/websocket handler:
        approvals.approve("call_abc")
        approvals.reject("call_def", "not needed")
        ```
    """

    def __init__(self) -> None:
        self._slots: dict[str, asyncio.Future[ApprovalDecision]] = {}
        self._waiting: set[str] = set()

    @property
    def pending(self) -> list[str]:
        """Execution ids currently registered and undecided."""
        return [eid for eid, fut in self._slots.items() if not fut.done()]

    def register(self, execution_id: str) -> None:
        """
        Start accepting decisions for ``execution_id``.

        Raises:
            DuplicateToolCallError: If the id is already registered
        """
        if execution_id in self._slots:
            raise DuplicateToolCallError(call_id=execution_id)
        self._slots[execution_id] = asyncio.get_running_loop().create_future()

    def release(self, execution_id: str) -> None:
        """Stop accepting decisions for ``execution_id``."""
        self._slots.pop(execution_id, None)
        self._waiting.discard(execution_id)

    def approve(self, execution_id: str) -> bool:
        """Approve an execution. Returns True if a registered execution received it."""
        return self._decide(execution_id, ApprovalDecision(approved=True))

    def reject(self, execution_id: str, reason: str | None = None) -> bool:
        """Reject an execution. Returns True if a registered execution received it."""
        return self._decide(execution_id, ApprovalDecision(approved=False, reason=reason))

    def _decide(self, execution_id: str, decision: ApprovalDecision) -> bool:
        slot = self._slots.get(execution_id)
        if slot is None or slot.done():
            logger.warning("Dropped approval decision for %s: no execution is awaiting it", execution_id)
            return False
        slot.set_result(decision)
        return True

    async def wait(
        self,
        execution_id: str,
        *,
        cancellation_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ApprovalDecision:
        """
        Wait for the operator's decision on ``execution_id``.

        Registers the id when the caller has not done so already. The id is
        released when the wait ends, however it ends.

        Args:
            execution_id: Tool call id awaiting approval
            cancellation_token: Stops waiting when cancelled
            timeout: Optional bound; ``None`` waits indefinitely

        Raises:
            DuplicateToolCallError: If another wait is already active for the id
            CancellationError: If the token fires first
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if execution_id in self._waiting:
            raise DuplicateToolCallError(call_id=execution_id)
        if execution_id not in self._slots:
            self.register(execution_id)

        future = self._slots[execution_id]
        self._waiting.add(execution_id)
        token = cancellation_token or CancellationToken.none()
        try:
            if timeout is None:
                return await token.race(future)
            return await asyncio.wait_for(token.race(future), timeout=timeout)
        finally:
            self._waiting.discard(execution_id)
            if self._slots.get(execution_id) is future:
                self.release(execution_id)


__all__ = ["ApprovalMode", "ApprovalPolicy", "ApprovalDecision", "ApprovalChannel"]
