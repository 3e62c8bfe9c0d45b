"""Events emitted by a streaming run.

Every run, blocking or not, is driven by the same event sequence: it starts
with :class:`RunStarted` and ends with exactly one of :class:`RunCompleted`
or :class:`RunFailed`, both of which carry the final :class:`RunResult`.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from cadre.agent.state import RunResult, RunState
from cadre.errors import RunWarning
from cadre.tools.base import ToolResult


@dataclass
class RunStarted:
    run_id: str
    session_id: str
    runner_id: str


@dataclass
class StateChanged:
    run_id: str
    state: RunState


@dataclass
class ContentDelta:
    """A piece of model output as it streams in."""

    run_id: str
    content: str


@dataclass
class ToolCallStarted:
    run_id: str
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolApprovalRequested:
    """A confirmation-gated tool call is waiting on the approval gate.

    Approve or deny it with ``gate.approve(approval_id)`` /
    ``gate.deny(approval_id)``.
    """

    run_id: str
    approval_id: str
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallCompleted:
    run_id: str
    result: ToolResult


@dataclass
class WarningRaised:
    run_id: str
    warning: RunWarning


@dataclass
class RunCompleted:
    run_id: str
    result: RunResult


@dataclass
class RunFailed:
    run_id: str
    result: RunResult


RunEvent = Union[
    RunStarted,
    StateChanged,
    ContentDelta,
    ToolCallStarted,
    ToolApprovalRequested,
    ToolCallCompleted,
    WarningRaised,
    RunCompleted,
    RunFailed,
]
