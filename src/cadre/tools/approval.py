"""
Human approval gate for tool calls that require confirmation.

A run that hits a confirmation-gated tool opens a pending approval and
suspends until someone calls :meth:`ApprovalGate.approve` or
:meth:`ApprovalGate.deny` (from another task, a UI or an API handler), the
optional prompt callback answers, or the timeout expires. Timeouts and
prompt errors deny.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Union
from uuid import uuid4

logger = logging.getLogger(__name__)


class ApprovalStatus(StrEnum):
    """Status of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    TIMEOUT = "timeout"


@dataclass
class ApprovalRequest:
    """A tool call waiting for a human decision."""

    tool_name: str
    arguments: dict[str, Any]
    tool_call_id: str
    description: str = ""
    run_id: str | None = None
    session_id: str | None = None
    user_id: str | None = None


@dataclass
class ApprovalDecision:
    """Result of an approval request."""

    status: ApprovalStatus
    user: str | None = None
    reason: str | None = None
    approval_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC).replace(tzinfo=None))

    @property
    def approved(self) -> bool:
        return self.status == ApprovalStatus.APPROVED


# Plain callbacks answer with a bool; sync callbacks run in a worker thread
ApprovalCallback = Callable[[ApprovalRequest], Union[bool, Awaitable[bool]]]


class PendingApproval:
    """A registered approval request and the future its decision lands in."""

    def __init__(self, approval_id: str, request: ApprovalRequest, timeout: float):
        self.approval_id = approval_id
        self.request = request
        self.timeout = timeout
        self.created_at = time.time()
        self.status = ApprovalStatus.PENDING
        self.decision: ApprovalDecision | None = None
        self._future: asyncio.Future[ApprovalDecision] = asyncio.get_running_loop().create_future()

    def is_expired(self) -> bool:
        return time.time() - self.created_at > self.timeout

    async def wait_for_decision(self) -> ApprovalDecision:
        """Wait for a decision; a timeout counts as a denial."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=self.timeout)
        except TimeoutError:
            decision = ApprovalDecision(
                status=ApprovalStatus.TIMEOUT,
                reason=f"No decision within {self.timeout}s",
                approval_id=self.approval_id,
            )
            self.set_decision(decision)
            return decision

    def set_decision(self, decision: ApprovalDecision) -> None:
        if self.decision is not None:
            return
        self.decision = decision
        self.status = decision.status
        if not self._future.done():
            self._future.set_result(decision)


class ApprovalGate:
    """Registry of pending approvals shared by the runs that use it."""

    def __init__(
        self,
        default_timeout: float = 300,
        prompt_callback: ApprovalCallback | None = None,
    ):
        """
        Initialize the gate.

        Args:
            default_timeout: Seconds before an unanswered request is denied
            prompt_callback: Optional callback asked for every request
        """
        self.default_timeout = default_timeout
        self.prompt_callback = prompt_callback
        self.pending_approvals: dict[str, PendingApproval] = {}

    def open(self, request: ApprovalRequest, timeout: float | None = None) -> PendingApproval:
        """Register a request so it can be approved or denied by id."""
        approval_id = str(uuid4())
        pending = PendingApproval(
            approval_id=approval_id,
            request=request,
            timeout=timeout or self.default_timeout,
        )
        self.pending_approvals[approval_id] = pending
        return pending

    async def wait(self, pending: PendingApproval) -> ApprovalDecision:
        """Wait for the decision on an opened request, then forget it."""
        prompt_task = None
        if self.prompt_callback is not None:
            prompt_task = asyncio.create_task(self._prompt(pending, self.prompt_callback))

        try:
            return await pending.wait_for_decision()
        finally:
            if prompt_task and not prompt_task.done():
                prompt_task.cancel()
            self.pending_approvals.pop(pending.approval_id, None)

    async def request(self, request: ApprovalRequest) -> ApprovalDecision:
        """Open a request and wait for its decision."""
        return await self.wait(self.open(request))

    async def _prompt(self, pending: PendingApproval, callback: ApprovalCallback) -> None:
        try:
            approved = await ask_callback(callback, pending.request)
        except Exception as e:
            logger.warning("Approval prompt for '%s' failed: %s", pending.request.tool_name, e)
            pending.set_decision(
                ApprovalDecision(
                    status=ApprovalStatus.DENIED,
                    reason=f"Error prompting user: {e}",
                    approval_id=pending.approval_id,
                )
            )
            return

        pending.set_decision(
            ApprovalDecision(
                status=ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED,
                approval_id=pending.approval_id,
            )
        )

    def approve(self, approval_id: str, user: str | None = None, reason: str | None = None) -> bool:
        """
        Approve a pending request.

        Returns:
            True if a live request was approved
        """
        pending = self.pending_approvals.get(approval_id)
        if pending is None or pending.is_expired():
            return False

        pending.set_decision(
            ApprovalDecision(
                status=ApprovalStatus.APPROVED,
                user=user,
                reason=reason,
                approval_id=approval_id,
            )
        )
        return True

    def deny(self, approval_id: str, user: str | None = None, reason: str | None = None) -> bool:
        """
        Deny a pending request.

        Returns:
            True if a pending request was denied
        """
        pending = self.pending_approvals.get(approval_id)
        if pending is None:
            return False

        pending.set_decision(
            ApprovalDecision(
                status=ApprovalStatus.DENIED,
                user=user,
                reason=reason,
                approval_id=approval_id,
            )
        )
        return True

    def get_pending(self, approval_id: str) -> PendingApproval | None:
        return self.pending_approvals.get(approval_id)

    def list_pending(self) -> list[PendingApproval]:
        """List live requests, dropping expired ones."""
        expired = [aid for aid, p in self.pending_approvals.items() if p.is_expired()]
        for aid in expired:
            del self.pending_approvals[aid]
        return list(self.pending_approvals.values())


async def ask_callback(callback: ApprovalCallback, request: ApprovalRequest) -> bool:
    """Ask a plain approval callback, sync or async."""
    if inspect.iscoroutinefunction(callback):
        return bool(await callback(request))
    answer = await asyncio.to_thread(callback, request)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)
