"""Workflow composition and execution.

A :class:`Workflow` runs its steps in order over a workflow state that
starts as a copy of the session state. Progress is checkpointed after every
completed node, so a failed run resumed with its ``workflow_run_id`` skips
the nodes that already finished: completed loop iterations, branches a
condition or router already chose and parallel branches that already
returned. Nodes inside a parallel branch rerun together with their branch.
On success the keys the run wrote merge into the session state, a run
record is appended to the session and the checkpoint is dropped.
"""

import asyncio
import copy
import inspect
import itertools
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from cadre.agent.cancellation import CancellationToken, gather_or_cancel
from cadre.agent.state import RunError
from cadre.errors import (
    Cancelled,
    CadreError,
    InvalidWorkflow,
    RunFailure,
    StateConflict,
    WorkflowStepFailed,
)
from cadre.storage.base import SessionStore
from cadre.storage.in_memory import InMemoryStorage
from cadre.storage.locks import session_locks
from cadre.storage.schema import (
    RunMetrics,
    RunRecord,
    RunStatus,
    SessionRecord,
    WorkflowCheckpoint,
    utcnow,
)
from cadre.workflow.steps import (
    AgentStep,
    Condition,
    FunctionStep,
    Loop,
    Parallel,
    Router,
    Step,
    StepInput,
    StepOutput,
    Steps,
    TeamStep,
    children,
    declared_writes,
)

logger = logging.getLogger(__name__)


class WorkflowResult(BaseModel):
    """Outcome of a workflow run. ``error`` is set exactly when it failed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    workflow_run_id: str
    workflow_id: str
    session_id: str
    content: Any = None
    error: RunError | None = None
    failed_step: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    step_outputs: dict[str, Any] = Field(default_factory=dict)
    resumed_from: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class WorkflowStarted:
    workflow_run_id: str
    session_id: str
    resumed_from: int | None = None


@dataclass
class StepStarted:
    workflow_run_id: str
    index: int
    name: str


@dataclass
class StepCompleted:
    workflow_run_id: str
    index: int
    name: str
    content: Any = None


@dataclass
class WorkflowCompleted:
    workflow_run_id: str
    result: WorkflowResult


@dataclass
class WorkflowFailed:
    workflow_run_id: str
    result: WorkflowResult


WorkflowEvent = Union[WorkflowStarted, StepStarted, StepCompleted, WorkflowCompleted, WorkflowFailed]


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


async def _call(fn: Any, arg: Any) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(arg)
    result = fn(arg)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _invoke(step: Step, fn: Any, arg: Any, cancel: CancellationToken) -> Any:
    """Call a user function of ``step``; anything it raises fails the step."""
    try:
        return await cancel.guard(_call(fn, arg))
    except CadreError:
        raise
    except Exception as e:
        raise WorkflowStepFailed(step.name, f"{type(e).__name__}: {e}") from e


def _branch_snapshot(frame: "_Frame") -> dict[str, Any]:
    return {
        "written": sorted(frame.written),
        "state": {k: _jsonable(frame.state[k]) for k in frame.written if k in frame.state},
        "outputs": {k: _jsonable(v) for k, v in frame.outputs.items()},
        "previous": _jsonable(frame.previous),
    }


def _restore_branch(frame: "_Frame", snapshot: dict[str, Any]) -> None:
    frame.written = set(snapshot["written"])
    for key in frame.written:
        if key in snapshot["state"]:
            frame.state[key] = copy.deepcopy(snapshot["state"][key])
        else:
            frame.state.pop(key, None)
    frame.outputs.update(snapshot["outputs"])
    frame.previous = snapshot["previous"]


def validate_steps(steps: Sequence[Step]) -> None:
    """Check a step graph before it runs.

    Raises:
        InvalidWorkflow: Empty sequences, unnamed or duplicate steps,
            unbounded loops, routers without routes
        StateConflict: Parallel branches declaring the same state keys
    """
    if not steps:
        raise InvalidWorkflow("A workflow needs at least one step")

    seen: set[str] = set()

    def visit(step: Step) -> None:
        if not step.name:
            raise InvalidWorkflow(f"Every step needs a name ({step.kind} step has none)")
        if step.name in seen:
            raise InvalidWorkflow(f"Duplicate step name '{step.name}'")
        seen.add(step.name)

        if isinstance(step, Loop):
            if step.max_iterations is None or step.max_iterations <= 0:
                raise InvalidWorkflow(
                    f"Loop '{step.name}' needs a positive max_iterations, got {step.max_iterations}"
                )
            if not step.body:
                raise InvalidWorkflow(f"Loop '{step.name}' has an empty body")
        elif isinstance(step, Parallel):
            if not step.branches:
                raise InvalidWorkflow(f"Parallel '{step.name}' has no branches")
            for a, b in itertools.combinations(step.branches, 2):
                overlap = declared_writes(a) & declared_writes(b)
                if overlap:
                    raise StateConflict(
                        f"Parallel '{step.name}': branches '{a.name}' and '{b.name}' "
                        f"both write {sorted(overlap)}",
                        keys=overlap,
                    )
        elif isinstance(step, Router):
            if not step.routes:
                raise InvalidWorkflow(f"Router '{step.name}' has no routes")
        elif isinstance(step, Steps):
            if not step.steps:
                raise InvalidWorkflow(f"Steps '{step.name}' is empty")
        elif isinstance(step, Condition):
            if not step.then and not step.otherwise:
                raise InvalidWorkflow(f"Condition '{step.name}' has no steps")

        for child in children(step):
            visit(child)

    for step in steps:
        visit(step)


@dataclass
class _Progress:
    """Resume bookkeeping of one workflow run, saved with every checkpoint."""

    next_step: int = 0
    completed: set[str] = field(default_factory=set)
    decisions: dict[str, Any] = field(default_factory=dict)
    branches: dict[str, dict[str, Any]] = field(default_factory=dict)
    save: Callable[[], None] | None = None

    def checkpoint(self) -> None:
        if self.save is not None:
            self.save()

    def done(self, path: str) -> None:
        self.completed.add(path)
        self.checkpoint()


@dataclass
class _Frame:
    """Execution context threaded through one branch of a workflow run.

    Only the root frame carries ``progress``; parallel branch frames are
    checkpointed as a whole once they finish.
    """

    input: Any
    session_id: str
    user_id: str | None
    cancel: CancellationToken
    state: dict[str, Any]
    previous: Any = None
    outputs: dict[str, Any] = field(default_factory=dict)
    written: set[str] = field(default_factory=set)
    progress: _Progress | None = None

    def step_input(self) -> StepInput:
        return StepInput(
            input=self.input,
            previous_output=self.previous,
            state=copy.deepcopy(self.state),
            outputs=dict(self.outputs),
        )

    def branch(self) -> "_Frame":
        return _Frame(
            input=self.input,
            session_id=self.session_id,
            user_id=self.user_id,
            cancel=self.cancel,
            state=copy.deepcopy(self.state),
            previous=self.previous,
            outputs=dict(self.outputs),
        )


class Workflow:
    """An ordered graph of steps over shared session state."""

    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        *,
        workflow_id: str | None = None,
        storage: SessionStore | None = None,
        description: str = "",
    ):
        """Compose a workflow.

        Raises:
            InvalidWorkflow: If the step graph is malformed
            StateConflict: If parallel branches declare overlapping writes
        """
        validate_steps(steps)
        self.name = name
        self.workflow_id = workflow_id or name
        self.steps = list(steps)
        self.storage: SessionStore = storage if storage is not None else InMemoryStorage()
        self.description = description

    async def astream(
        self,
        input: Any = None,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        workflow_run_id: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[WorkflowEvent]:
        """Run (or resume) the workflow, yielding per-step events.

        Args:
            input: Workflow input (taken from the checkpoint when resuming)
            session_id: Session whose state the workflow reads and updates
            user_id: Active user
            workflow_run_id: Id of a failed run to resume from its checkpoint
            cancel: Token the caller can fire to stop the run
        """
        cancel = cancel or CancellationToken()
        started = time.perf_counter()
        checkpoint = self.storage.load_checkpoint(workflow_run_id) if workflow_run_id else None
        run_id = workflow_run_id or str(uuid4())

        if checkpoint is not None:
            session_id = checkpoint.session_id
            user_id = user_id or checkpoint.user_id
            if input is None:
                input = checkpoint.input
            start = checkpoint.next_step
            logger.info(
                "Resuming workflow run %s at step %d (%d nodes done)",
                run_id,
                start,
                len(checkpoint.completed),
            )
            progress = _Progress(
                next_step=start,
                completed=set(checkpoint.completed),
                decisions=dict(checkpoint.decisions),
                branches=copy.deepcopy(checkpoint.branches),
            )
            frame = _Frame(
                input=input,
                session_id=session_id,
                user_id=user_id,
                cancel=cancel,
                state=copy.deepcopy(checkpoint.state),
                previous=checkpoint.last_output,
                outputs=dict(checkpoint.step_outputs),
                written=set(checkpoint.written),
                progress=progress,
            )
        else:
            session_id = session_id or str(uuid4())
            session = await self._open_session(session_id, user_id)
            start = 0
            progress = _Progress()
            frame = _Frame(
                input=input,
                session_id=session_id,
                user_id=user_id,
                cancel=cancel,
                state=copy.deepcopy(session.state),
                progress=progress,
            )
        progress.save = lambda: self._checkpoint(run_id, frame, progress)

        resumed_from = start if checkpoint is not None else None
        yield WorkflowStarted(run_id, session_id, resumed_from)

        def result(error: RunError | None = None, failed_step: str | None = None) -> WorkflowResult:
            return WorkflowResult(
                workflow_run_id=run_id,
                workflow_id=self.workflow_id,
                session_id=session_id,
                content=frame.previous if error is None else None,
                error=error,
                failed_step=failed_step,
                state=copy.deepcopy(frame.state),
                step_outputs=dict(frame.outputs),
                resumed_from=resumed_from,
            )

        index = start
        try:
            for index in range(start, len(self.steps)):
                step = self.steps[index]
                progress.next_step = index
                yield StepStarted(run_id, index, step.name)
                await self._execute(step, frame)
                progress.next_step = index + 1
                progress.done(step.name)
                yield StepCompleted(run_id, index, step.name, frame.previous)
        except (WorkflowStepFailed, StateConflict, RunFailure) as e:
            failed_step = getattr(e, "step_name", None) or self.steps[index].name
            error = RunError(code=getattr(e, "cause_code", None) or e.code, message=str(e))
            logger.warning("Workflow run %s failed at '%s': %s", run_id, failed_step, e)
            self._append_run(run_id, frame, started, RunStatus.FAILED, error)
            yield WorkflowFailed(run_id, result(error, failed_step))
            return

        async with session_locks.lock(session_id):
            # Keys the run never wrote keep whatever other runs committed
            current = self.storage.get_state(session_id)
            for key in frame.written:
                if key in frame.state:
                    current[key] = frame.state[key]
                else:
                    current.pop(key, None)
            self.storage.set_state(session_id, current)
            self._append_run(run_id, frame, started, RunStatus.COMPLETED)
        self.storage.clear_checkpoint(run_id)
        logger.info("Workflow run %s completed", run_id)
        yield WorkflowCompleted(run_id, result())

    async def arun(self, input: Any = None, **kwargs: Any) -> WorkflowResult:
        """Run the workflow and return its result. See :meth:`astream`."""
        outcome: WorkflowResult | None = None
        async for event in self.astream(input, **kwargs):
            if isinstance(event, (WorkflowCompleted, WorkflowFailed)):
                outcome = event.result
        assert outcome is not None
        return outcome

    def run(self, input: Any = None, **kwargs: Any) -> WorkflowResult:
        return asyncio.run(self.arun(input, **kwargs))

    async def _open_session(self, session_id: str, user_id: str | None) -> SessionRecord:
        async with session_locks.lock(session_id):
            session = self.storage.load_session(session_id)
            if session is None:
                session = self.storage.create_session(
                    SessionRecord(
                        session_id=session_id,
                        owner_type="workflow",
                        owner_id=self.workflow_id,
                        user_id=user_id,
                    )
                )
            elif user_id and session.user_id and session.user_id != user_id:
                raise InvalidWorkflow(f"Session '{session_id}' belongs to another user")
        return session

    def _checkpoint(self, run_id: str, frame: _Frame, progress: _Progress) -> None:
        self.storage.save_checkpoint(
            WorkflowCheckpoint(
                workflow_run_id=run_id,
                workflow_id=self.workflow_id,
                session_id=frame.session_id,
                user_id=frame.user_id,
                input=_jsonable(frame.input),
                next_step=progress.next_step,
                state=copy.deepcopy(frame.state),
                written=sorted(frame.written),
                last_output=_jsonable(frame.previous),
                step_outputs={k: _jsonable(v) for k, v in frame.outputs.items()},
                completed=sorted(progress.completed),
                decisions=dict(progress.decisions),
                branches=progress.branches,
                updated_at=utcnow(),
            )
        )
        logger.debug(
            "Checkpointed workflow run %s (%d nodes done)", run_id, len(progress.completed)
        )

    def _append_run(
        self,
        run_id: str,
        frame: _Frame,
        started: float,
        status: RunStatus,
        error: RunError | None = None,
    ) -> None:
        self.storage.append_run(
            frame.session_id,
            RunRecord(
                # Resumed attempts share the workflow run id
                run_id=f"{run_id}:{uuid4().hex[:8]}",
                session_id=frame.session_id,
                runner_id=self.workflow_id,
                user_id=frame.user_id,
                status=status,
                input=_jsonable(frame.input),
                output=_jsonable(frame.previous) if status == RunStatus.COMPLETED else None,
                error=error.model_dump(mode="json") if error else None,
                metrics=RunMetrics(latency_ms=(time.perf_counter() - started) * 1000),
            ),
        )

    # Step execution

    def _apply(self, step: FunctionStep | AgentStep | TeamStep, frame: _Frame, output: StepOutput) -> None:
        for key, value in output.state.items():
            frame.state[key] = value
            frame.written.add(key)
        if step.output_key:
            frame.state[step.output_key] = output.content
            frame.written.add(step.output_key)
        frame.outputs[step.name] = output.content
        frame.previous = output.content

    async def _execute_sequence(self, steps: Sequence[Step], frame: _Frame, scope: str) -> None:
        for step in steps:
            await self._execute(step, frame, scope)

    async def _execute(self, step: Step, frame: _Frame, scope: str = "") -> None:
        """Run one node. Nested nodes are addressed by ``scope`` + name."""
        path = scope + step.name
        progress = frame.progress
        if progress is not None and path in progress.completed:
            logger.debug("Skipping node '%s', done before resume", path)
            return
        frame.cancel.raise_if_cancelled()

        await self._execute_node(step, frame, path)

        # Top-level steps are recorded by the run loop along with next_step
        if progress is not None and scope:
            progress.done(path)

    async def _execute_node(self, step: Step, frame: _Frame, path: str) -> None:
        if isinstance(step, FunctionStep):
            value = await _invoke(step, step.fn, frame.step_input(), frame.cancel)
            output = value if isinstance(value, StepOutput) else StepOutput(content=value)
            self._apply(step, frame, output)

        elif isinstance(step, (AgentStep, TeamStep)):
            await self._execute_runner(step, frame)

        elif isinstance(step, Condition):
            holds = await self._decide(step, step.predicate, frame, path)
            await self._execute_sequence(step.then if holds else step.otherwise, frame, f"{path}/")
            frame.outputs[step.name] = frame.previous

        elif isinstance(step, Loop):
            await self._execute_loop(step, frame, path)

        elif isinstance(step, Router):
            key = await self._decide(step, step.selector, frame, path)
            route = step.routes.get(key)
            if route is None:
                if step.default is None:
                    raise WorkflowStepFailed(
                        step.name, f"Unknown route '{key}' (routes: {sorted(step.routes)})"
                    )
                route = step.default
            await self._execute_sequence(route, frame, f"{path}/")
            frame.outputs[step.name] = frame.previous

        elif isinstance(step, Steps):
            await self._execute_sequence(step.steps, frame, f"{path}/")
            frame.outputs[step.name] = frame.previous

        elif isinstance(step, Parallel):
            await self._execute_parallel(step, frame, path)

        else:
            raise InvalidWorkflow(f"Unknown step kind: {step!r}")

    async def _decide(self, step: Condition | Router, fn: Any, frame: _Frame, path: str) -> Any:
        """Evaluate a branch choice once; a resumed run reuses the recorded one."""
        progress = frame.progress
        if progress is not None and path in progress.decisions:
            return progress.decisions[path]
        choice = await _invoke(step, fn, frame.step_input(), frame.cancel)
        if isinstance(step, Condition):
            choice = bool(choice)
        if progress is not None:
            progress.decisions[path] = choice
            progress.checkpoint()
        return choice

    async def _execute_loop(self, step: Loop, frame: _Frame, path: str) -> None:
        progress = frame.progress
        max_iterations = step.max_iterations or 0
        for iteration in range(1, max_iterations + 1):
            marker = f"{path}#{iteration}"
            if progress is not None and marker in progress.completed:
                continue
            await self._execute_sequence(step.body, frame, f"{marker}/")
            finished = step.until is not None and await _invoke(
                step, step.until, frame.step_input(), frame.cancel
            )
            if finished:
                logger.debug("Loop '%s' finished after %d iterations", step.name, iteration)
                break
            if progress is not None:
                progress.done(marker)
        frame.outputs[step.name] = frame.previous

    async def _execute_runner(self, step: AgentStep | TeamStep, frame: _Frame) -> None:
        step_input = frame.step_input()
        if step.input_fn is not None:
            runner_input = await _invoke(step, step.input_fn, step_input, frame.cancel)
        else:
            runner_input = step_input.last
        runner = step.agent if isinstance(step, AgentStep) else step.team

        # The runner works on a copy of the workflow state in its own
        # sub-session; the keys it changes become the step's state delta.
        sub_session = f"{frame.session_id}:{step.name}"
        prior = runner.storage.load_session(sub_session)
        before = {**(prior.state if prior is not None else {}), **frame.state}
        outcome = await runner.arun(
            runner_input,
            session_id=sub_session,
            user_id=frame.user_id,
            cancel=frame.cancel,
            session_state=copy.deepcopy(frame.state),
        )
        if outcome.error is not None:
            if outcome.error.code == Cancelled.code:
                raise Cancelled(outcome.error.message)
            raise WorkflowStepFailed(step.name, outcome.error.message, outcome.error.code)

        after = outcome.session_state
        delta = {k: v for k, v in after.items() if k not in before or before[k] != v}
        for key in [k for k in frame.state if k not in after]:
            del frame.state[key]
            frame.written.add(key)
        self._apply(step, frame, StepOutput(content=outcome.content, state=delta))

    async def _execute_parallel(self, step: Parallel, frame: _Frame, path: str) -> None:
        progress = frame.progress
        branches = [frame.branch() for _ in step.branches]
        pending = []
        for branch, child in zip(step.branches, branches, strict=True):
            key = f"{path}/{branch.name}"
            if progress is not None and key in progress.branches:
                _restore_branch(child, progress.branches[key])
            else:
                pending.append(self._execute_branch(branch, child, key, progress))
        # A failing branch cancels the ones still running
        await gather_or_cancel(*pending)

        for (a, fa), (b, fb) in itertools.combinations(zip(step.branches, branches, strict=True), 2):
            overlap = fa.written & fb.written
            if overlap:
                raise StateConflict(
                    f"Parallel '{step.name}': branches '{a.name}' and '{b.name}' "
                    f"both wrote {sorted(overlap)}",
                    keys=overlap,
                )

        content = {}
        for branch, child in zip(step.branches, branches, strict=True):
            for key in child.written:
                if key in child.state:
                    frame.state[key] = child.state[key]
                else:
                    frame.state.pop(key, None)
            frame.written |= child.written
            frame.outputs.update(child.outputs)
            content[branch.name] = child.previous

        frame.outputs[step.name] = content
        frame.previous = content
        if progress is not None:
            for branch in step.branches:
                progress.branches.pop(f"{path}/{branch.name}", None)

    async def _execute_branch(
        self, branch: Step, frame: _Frame, key: str, progress: _Progress | None
    ) -> None:
        await self._execute(branch, frame)
        if progress is not None:
            progress.branches[key] = _branch_snapshot(frame)
            progress.checkpoint()
