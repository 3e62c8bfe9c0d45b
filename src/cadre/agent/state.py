"""Run states and the result returned to blocking callers."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cadre.errors import RunFailure, RunWarning
from cadre.llm.client import Message
from cadre.storage.schema import RunMetrics
from cadre.tools.base import ToolResult


class RunState(StrEnum):
    """States of the run state machine."""

    VALIDATING_INPUT = "validating_input"
    BUILDING_CONTEXT = "building_context"
    INVOKING_MODEL = "invoking_model"
    EXECUTING_TOOLS = "executing_tools"
    VALIDATING_OUTPUT = "validating_output"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)


class RunError(BaseModel):
    """Structured description of a fatal run failure."""

    code: str
    message: str
    state: RunState | None = None

    @classmethod
    def from_failure(cls, failure: RunFailure) -> "RunError":
        state = RunState(failure.state) if failure.state else None
        return cls(code=failure.code, message=failure.message, state=state)


class RunResult(BaseModel):
    """Final outcome of a run.

    Exactly one of ``content`` and ``error`` is set. Successful runs with an
    output schema carry the validated object (a model instance or a dict) as
    ``content``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    session_id: str
    runner_id: str
    user_id: str | None = None
    content: Any = None
    error: RunError | None = None
    warnings: list[RunWarning] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    session_state: dict[str, Any] = Field(default_factory=dict)
    metrics: RunMetrics = Field(default_factory=RunMetrics)

    @model_validator(mode="after")
    def _content_xor_error(self) -> "RunResult":
        if (self.content is None) == (self.error is None):
            raise ValueError("A run result carries either content or an error, not both")
        return self

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def state(self) -> RunState:
        return RunState.DONE if self.error is None else RunState.FAILED

    def has_warning(self, code: str) -> bool:
        return any(w.code == code for w in self.warnings)
