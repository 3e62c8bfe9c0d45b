"""Tests for the human approval gate."""

import asyncio

import pytest

from cadre.tools import ApprovalGate, ApprovalRequest, ApprovalStatus


@pytest.fixture
def request_():
    return ApprovalRequest(tool_name="write_file", arguments={"path": "a.txt"}, tool_call_id="c1")


class TestApprovalGate:
    @pytest.mark.asyncio
    async def test_approve_from_another_task(self, request_):
        gate = ApprovalGate(default_timeout=5)
        pending = gate.open(request_)

        assert gate.get_pending(pending.approval_id) is pending
        assert gate.approve(pending.approval_id, user="alice")

        decision = await gate.wait(pending)

        assert decision.approved
        assert decision.user == "alice"
        assert gate.get_pending(pending.approval_id) is None

    @pytest.mark.asyncio
    async def test_deny(self, request_):
        gate = ApprovalGate(default_timeout=5)

        async def decide():
            while not gate.list_pending():
                await asyncio.sleep(0.001)
            gate.deny(gate.list_pending()[0].approval_id, reason="not today")

        decision, _ = await asyncio.gather(gate.request(request_), decide())

        assert decision.status == ApprovalStatus.DENIED
        assert decision.reason == "not today"

    @pytest.mark.asyncio
    async def test_timeout_denies(self, request_):
        gate = ApprovalGate(default_timeout=0.01)

        decision = await gate.request(request_)

        assert decision.status == ApprovalStatus.TIMEOUT
        assert not decision.approved

    @pytest.mark.asyncio
    async def test_prompt_callback(self, request_):
        seen = []

        def prompt(req):
            seen.append(req.tool_name)
            return True

        gate = ApprovalGate(default_timeout=5, prompt_callback=prompt)

        decision = await gate.request(request_)

        assert decision.approved
        assert seen == ["write_file"]

    @pytest.mark.asyncio
    async def test_failing_prompt_denies(self, request_):
        async def prompt(req):
            raise RuntimeError("terminal closed")

        gate = ApprovalGate(default_timeout=5, prompt_callback=prompt)

        decision = await gate.request(request_)

        assert decision.status == ApprovalStatus.DENIED
        assert "terminal closed" in decision.reason

    @pytest.mark.asyncio
    async def test_unknown_approval_id(self):
        gate = ApprovalGate()

        assert not gate.approve("missing")
        assert not gate.deny("missing")

    @pytest.mark.asyncio
    async def test_first_decision_wins(self, request_):
        gate = ApprovalGate(default_timeout=5)
        pending = gate.open(request_)

        gate.deny(pending.approval_id)
        gate.approve(pending.approval_id)

        decision = await gate.wait(pending)
        assert decision.status == ApprovalStatus.DENIED
