"""Error taxonomy for cadre runs, teams and workflows.

Fatal run conditions subclass :class:`RunFailure`; the run engine catches
them, moves the run to ``failed`` and reports them as a structured
:class:`~cadre.agent.state.RunError`. Non-fatal conditions never raise: they
are recorded as :class:`RunWarning` entries on the final result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class CadreError(Exception):
    """Base class for all cadre errors."""

    code: str = "cadre_error"


class RunFailure(CadreError):
    """A condition that moves a run to the ``failed`` state."""

    code = "run_failure"

    def __init__(self, message: str, *, state: str | None = None):
        super().__init__(message)
        self.message = message
        self.state = state


class InvalidInput(RunFailure):
    """Run input did not match the input schema or was rejected by a guardrail."""

    code = "invalid_input"


class InvalidOutput(RunFailure):
    """Model output did not match the output schema after the reformat retry."""

    code = "invalid_output"


class UnknownTool(RunFailure):
    """The model requested a tool that is not registered."""

    code = "unknown_tool"


class ToolLoopExceeded(RunFailure):
    """Tool/model cycles exceeded the configured bound."""

    code = "tool_loop_exceeded"


class ModelError(RunFailure):
    """The model backend failed or timed out."""

    code = "model_error"


class Cancelled(RunFailure):
    """The caller cancelled the run."""

    code = "cancelled"


class DuplicateTool(CadreError):
    """A tool with the same name is already registered."""

    code = "duplicate_tool"


class InvalidWorkflow(CadreError):
    """A workflow graph is malformed."""

    code = "invalid_workflow"


class StateConflict(CadreError):
    """Parallel workflow branches write the same state keys."""

    code = "state_conflict"

    def __init__(self, message: str, keys: set[str] | None = None):
        super().__init__(message)
        self.keys = keys or set()


class WorkflowStepFailed(CadreError):
    """A workflow step failed; the workflow can be resumed from its checkpoint."""

    code = "workflow_step_failed"

    def __init__(self, step_name: str, message: str, cause_code: str | None = None):
        super().__init__(f"Step '{step_name}' failed: {message}")
        self.step_name = step_name
        self.cause_code = cause_code


class WarningCode(StrEnum):
    """Codes for non-fatal conditions attached to a run result."""

    KNOWLEDGE_UNAVAILABLE = "knowledge_unavailable"
    TOOL_DENIED = "tool_denied"
    TOOL_FAILED = "tool_failed"
    DELEGATION_LIMIT_EXCEEDED = "delegation_limit_exceeded"
    OUTPUT_REFORMATTED = "output_reformatted"
    GUARDRAIL_TRIGGERED = "guardrail_triggered"
    MEMORY_UPDATE_FAILED = "memory_update_failed"


@dataclass(frozen=True)
class RunWarning:
    """A recoverable condition absorbed during a run."""

    code: WarningCode
    message: str
