"""Workflow step kinds.

Steps are plain dataclasses tagged by ``kind``. Leaf steps (function,
agent, team) produce output; composite steps (condition, loop, parallel,
router, steps) arrange other steps.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Union

if TYPE_CHECKING:
    from cadre.agent.loop import Agent
    from cadre.team.coordinator import Team


@dataclass
class StepInput:
    """What a step sees when it runs.

    ``state`` is a snapshot: steps change state by returning a delta in
    their :class:`StepOutput`, not by mutating it.
    """

    input: Any
    previous_output: Any = None
    state: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def last(self) -> Any:
        """Previous output, or the workflow input for the first step."""
        return self.input if self.previous_output is None else self.previous_output


@dataclass
class StepOutput:
    """Step result: output content plus state keys to set."""

    content: Any = None
    state: dict[str, Any] = field(default_factory=dict)


StepFunction = Callable[[StepInput], Union[StepOutput, Any, Awaitable[Any]]]
Predicate = Callable[[StepInput], Union[bool, Awaitable[bool]]]
Selector = Callable[[StepInput], Union[str, Awaitable[str]]]
InputBuilder = Callable[[StepInput], Any]


@dataclass
class FunctionStep:
    """Call a sync or async function with the step input.

    The function may return a :class:`StepOutput` or any plain value,
    which becomes the step's content.
    """

    name: str
    fn: StepFunction
    writes: Sequence[str] = ()
    output_key: str | None = None
    kind: Literal["function"] = field(default="function", init=False)


@dataclass
class AgentStep:
    """Run an agent. Its input is ``input_fn(step_input)`` or the last output."""

    name: str
    agent: Agent
    input_fn: InputBuilder | None = None
    writes: Sequence[str] = ()
    output_key: str | None = None
    kind: Literal["agent"] = field(default="agent", init=False)


@dataclass
class TeamStep:
    """Run a team. Its input is ``input_fn(step_input)`` or the last output."""

    name: str
    team: Team
    input_fn: InputBuilder | None = None
    writes: Sequence[str] = ()
    output_key: str | None = None
    kind: Literal["team"] = field(default="team", init=False)


@dataclass
class Condition:
    """Run ``then`` when the predicate holds, ``otherwise`` when it does not."""

    name: str
    predicate: Predicate
    then: Sequence[Step]
    otherwise: Sequence[Step] = ()
    kind: Literal["condition"] = field(default="condition", init=False)


@dataclass
class Loop:
    """Repeat ``body`` until ``until`` holds, at most ``max_iterations`` times.

    ``until`` is checked after every iteration.
    """

    name: str
    body: Sequence[Step]
    max_iterations: int | None = None
    until: Predicate | None = None
    kind: Literal["loop"] = field(default="loop", init=False)


@dataclass
class Parallel:
    """Run branches concurrently on state snapshots and merge their writes.

    Branches that write the same key conflict.
    """

    name: str
    branches: Sequence[Step]
    kind: Literal["parallel"] = field(default="parallel", init=False)


@dataclass
class Router:
    """Pick one route by the key the selector returns."""

    name: str
    selector: Selector
    routes: dict[str, Sequence[Step]]
    default: Sequence[Step] | None = None
    kind: Literal["router"] = field(default="router", init=False)


@dataclass
class Steps:
    """A named sequence of steps."""

    name: str
    steps: Sequence[Step]
    kind: Literal["steps"] = field(default="steps", init=False)


Step = Union[FunctionStep, AgentStep, TeamStep, Condition, Loop, Parallel, Router, Steps]


def children(step: Step) -> list[Step]:
    """Direct child steps of a composite step."""
    if isinstance(step, Condition):
        return [*step.then, *step.otherwise]
    if isinstance(step, Loop):
        return list(step.body)
    if isinstance(step, Parallel):
        return list(step.branches)
    if isinstance(step, Router):
        nested = [s for route in step.routes.values() for s in route]
        return nested + list(step.default or ())
    if isinstance(step, Steps):
        return list(step.steps)
    return []


def declared_writes(step: Step) -> set[str]:
    """State keys a step declares it may write, through ``writes`` and ``output_key``."""
    if isinstance(step, (FunctionStep, AgentStep, TeamStep)):
        keys = set(step.writes)
        if step.output_key:
            keys.add(step.output_key)
        return keys

    keys = set()
    for child in children(step):
        keys |= declared_writes(child)
    return keys
