"""Leader/member team coordination.

A team run is a bounded loop of delegation rounds::

    analyze -> select_member -> delegate -> evaluate -> (select_member | complete)

The leader is an ordinary :class:`~cadre.agent.Agent` with ``role="leader"``
whose output schema is :class:`LeaderDecision`. Each round it either
delegates tasks to members, which run concurrently as full agent runs, or
completes with the final answer.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from cadre.agent.cancellation import CancellationToken, gather_or_cancel
from cadre.agent.events import RunCompleted, RunFailed, RunStarted
from cadre.agent.loop import Agent, merge_state
from cadre.agent.state import RunError, RunResult
from cadre.errors import RunWarning, WarningCode
from cadre.llm.client import LLMClient
from cadre.storage.base import SessionStore
from cadre.storage.in_memory import InMemoryStorage
from cadre.storage.locks import session_locks
from cadre.storage.schema import RunMetrics

logger = logging.getLogger(__name__)

LEADER_INSTRUCTIONS = """\
You lead a team of specialised agents. Break the user's task down, hand \
pieces to the members best suited for them and judge their results.

Each turn, either delegate one or more tasks to members (they work in \
parallel and you will see their results), or complete with the final \
answer once you have what you need. Write member tasks so they can be done \
without seeing the rest of the conversation."""


class Delegation(BaseModel):
    member: str = Field(description="Name of the member to delegate to")
    task: str = Field(description="Self-contained task for the member")


class LeaderDecision(BaseModel):
    """What the leader wants to do next."""

    action: Literal["delegate", "complete"]
    delegations: list[Delegation] = Field(default_factory=list)
    answer: str | None = Field(default=None, description="Final answer when completing")
    reasoning: str = ""

    @model_validator(mode="after")
    def _check_action(self) -> LeaderDecision:
        if self.action == "delegate" and not self.delegations:
            raise ValueError("'delegate' needs at least one delegation")
        if self.action == "complete" and self.answer is None:
            raise ValueError("'complete' needs an answer")
        return self


@dataclass
class DelegationStarted:
    run_id: str
    round: int
    member: str
    task: str


@dataclass
class DelegationCompleted:
    """A delegation finished. ``result`` is None for unknown members."""

    run_id: str
    round: int
    member: str
    report: str
    result: RunResult | None = None


TeamEvent = RunStarted | DelegationStarted | DelegationCompleted | RunCompleted | RunFailed


def _add_metrics(total: RunMetrics, part: RunMetrics) -> None:
    total.input_tokens += part.input_tokens
    total.output_tokens += part.output_tokens
    total.model_calls += part.model_calls
    total.tool_calls += part.tool_calls


class Team:
    """A leader agent delegating to member agents."""

    def __init__(
        self,
        llm: LLMClient,
        members: Sequence[Agent],
        name: str = "team",
        *,
        team_id: str | None = None,
        instructions: str = LEADER_INSTRUCTIONS,
        storage: SessionStore | None = None,
        max_rounds: int = 5,
        share_session_with_members: bool = False,
        **leader_options: Any,
    ):
        """Initialize the team.

        Args:
            llm: Model client for the leader
            members: Member agents, addressed by name
            name: Team name
            team_id: Owner id of team sessions (defaults to name)
            instructions: Leader instructions
            storage: Store for the team session
            max_rounds: Maximum delegation rounds per team run
            share_session_with_members: Run members in the team session
            **leader_options: Extra Agent arguments for the leader

        Raises:
            ValueError: On duplicate member names, a bad round bound, or
                shared sessions with members on another store
        """
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")

        self.name = name
        self.team_id = team_id or name
        self.max_rounds = max_rounds
        self.share_session_with_members = share_session_with_members
        self.storage: SessionStore = storage if storage is not None else InMemoryStorage()

        self.members: dict[str, Agent] = {}
        for member in members:
            if member.name in self.members:
                raise ValueError(f"Duplicate team member '{member.name}'")
            if share_session_with_members and member.storage is not self.storage:
                raise ValueError(
                    f"Member '{member.name}' must use the team storage to share its session"
                )
            self.members[member.name] = member

        self.leader = Agent(
            llm,
            f"{name}-leader",
            agent_id=self.team_id,
            role="leader",
            instructions=instructions,
            role_context=self.roster(),
            storage=self.storage,
            output_schema=LeaderDecision,
            owner_type="team",
            **leader_options,
        )

    def roster(self) -> str:
        lines = [f"- {m.name}: {m.description or 'general assistant'}" for m in self.members.values()]
        return "<team_members>\n" + "\n".join(lines) + "\n</team_members>"

    async def astream(
        self,
        input: Any,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        cancel: CancellationToken | None = None,
        session_state: dict[str, Any] | None = None,
    ) -> AsyncIterator[TeamEvent]:
        """Run the team, yielding delegation events and the final result.

        Args:
            input: Task for the team
            session_id: Team session (a new one if omitted)
            user_id: Active user
            cancel: Token the caller can fire to stop the run
            session_state: Values overriding the team session state for this run
        """
        run_id = str(uuid4())
        session_id = session_id or str(uuid4())
        cancel = cancel or CancellationToken()
        started = time.perf_counter()
        metrics = RunMetrics()
        warnings: list[RunWarning] = []
        best: str | None = None

        logger.info("Team run %s of '%s' started on session %s", run_id, self.name, session_id)
        yield RunStarted(run_id, session_id, self.team_id)

        def finish(content: Any = None, error: RunError | None = None) -> RunResult:
            metrics.latency_ms = (time.perf_counter() - started) * 1000
            return RunResult(
                run_id=run_id,
                session_id=session_id,
                runner_id=self.team_id,
                user_id=user_id,
                content=content,
                error=error,
                warnings=warnings,
                session_state=self.storage.get_state(session_id) if error is None else {},
                metrics=metrics,
            )

        prompt = input
        rounds = 0
        while True:
            decision_run = await self.leader.arun(
                prompt,
                session_id=session_id,
                user_id=user_id,
                cancel=cancel,
                session_state=session_state if rounds == 0 else None,
            )
            _add_metrics(metrics, decision_run.metrics)
            warnings.extend(decision_run.warnings)

            if decision_run.error is not None:
                logger.warning("Team run %s failed: leader %s", run_id, decision_run.error.message)
                yield RunFailed(run_id, finish(error=decision_run.error))
                return

            decision: LeaderDecision = decision_run.content
            if decision.action == "complete":
                logger.info("Team run %s completed after %d rounds", run_id, rounds)
                yield RunCompleted(run_id, finish(content=decision.answer))
                return

            if rounds >= self.max_rounds:
                logger.warning("Team run %s hit the delegation limit (%d)", run_id, self.max_rounds)
                warnings.append(
                    RunWarning(
                        WarningCode.DELEGATION_LIMIT_EXCEEDED,
                        f"Stopped after {self.max_rounds} delegation rounds",
                    )
                )
                content = best if best is not None else f"No result after {self.max_rounds} delegation rounds"
                yield RunCompleted(run_id, finish(content=content))
                return

            rounds += 1
            for delegation in decision.delegations:
                yield DelegationStarted(run_id, rounds, delegation.member, delegation.task)

            outcomes = await gather_or_cancel(
                *(
                    self._delegate(delegation, session_id, user_id, cancel)
                    for delegation in decision.delegations
                )
            )

            reports = []
            for delegation, (report, result) in zip(decision.delegations, outcomes, strict=True):
                if result is not None:
                    _add_metrics(metrics, result.metrics)
                    warnings.extend(result.warnings)
                    if result.succeeded:
                        best = str(result.content)
                reports.append(report)
                yield DelegationCompleted(run_id, rounds, delegation.member, report, result)

            prompt = (
                f"Original task:\n{input}\n\n"
                f"Results of delegation round {rounds}:\n\n" + "\n\n".join(reports) + "\n\n"
                "Delegate again or complete with the final answer."
            )

    async def _delegate(
        self,
        delegation: Delegation,
        session_id: str,
        user_id: str | None,
        cancel: CancellationToken,
    ) -> tuple[str, RunResult | None]:
        member = self.members.get(delegation.member)
        header = f"[{delegation.member}] task: {delegation.task}"
        if member is None:
            available = ", ".join(self.members) or "none"
            logger.info("Leader of '%s' picked unknown member '%s'", self.name, delegation.member)
            return f"{header}\nError: Unknown member '{delegation.member}'. Available members: {available}", None

        if self.share_session_with_members:
            result = await member.arun(
                delegation.task, session_id=session_id, user_id=user_id, cancel=cancel
            )
        else:
            result = await self._run_isolated(member, delegation.task, session_id, user_id, cancel)
        if result.error is not None:
            logger.warning("Member '%s' failed: %s", member.name, result.error.message)
            return f"{header}\nFailed ({result.error.code}): {result.error.message}", result

        logger.info("Delegation to '%s' completed", member.name)
        return f"{header}\nResult: {result.content}", result

    async def _run_isolated(
        self,
        member: Agent,
        task: str,
        session_id: str,
        user_id: str | None,
        cancel: CancellationToken,
    ) -> RunResult:
        # The member works on a copy of the team state in its own sub-session;
        # keys it changes are merged back into the team session.
        sub_session = f"{session_id}:{member.name}"
        prior = member.storage.load_session(sub_session)
        snapshot = self.storage.get_state(session_id)
        before = {**(prior.state if prior is not None else {}), **snapshot}
        result = await member.arun(
            task,
            session_id=sub_session,
            user_id=user_id,
            cancel=cancel,
            session_state=copy.deepcopy(snapshot),
        )
        if result.succeeded:
            async with session_locks.lock(session_id):
                current = self.storage.get_state(session_id)
                merged = merge_state(current, before, result.session_state)
                self.storage.set_state(session_id, merged)
        return result

    async def arun(self, input: Any, **kwargs: Any) -> RunResult:
        """Run the team and return the final result."""
        result: RunResult | None = None
        async for event in self.astream(input, **kwargs):
            if isinstance(event, (RunCompleted, RunFailed)):
                result = event.result
        assert result is not None
        return result

    def run(self, input: Any, **kwargs: Any) -> RunResult:
        """Blocking version of :meth:`arun`."""

        async def main() -> RunResult:
            try:
                return await self.arun(input, **kwargs)
            finally:
                await self.wait_for_background()

        return asyncio.run(main())

    async def wait_for_background(self) -> None:
        """Wait for background memory updates of the leader and every member."""
        await self.leader.wait_for_background()
        for member in self.members.values():
            await member.wait_for_background()
