"""Pydantic models for persisted sessions, runs, memories and checkpoints."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class RunStatus(StrEnum):
    """Terminal status of a persisted run."""

    COMPLETED = "completed"
    FAILED = "failed"


class RunMetrics(BaseModel):
    """Measurements collected over one run."""

    latency_ms: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    model_calls: int = 0
    tool_calls: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class RunRecord(BaseModel):
    """One persisted run. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    session_id: str
    runner_id: str  # agent, team or workflow that produced the run
    user_id: str | None = None
    status: RunStatus
    input: Any = None
    output: Any = None
    error: dict[str, Any] | None = None  # {"code", "message", "state"}
    messages: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    created_at: datetime = Field(default_factory=utcnow)


class SessionSummary(BaseModel):
    """Running summary of a session, regenerated every few runs."""

    summary: str
    topics: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)


class SessionRecord(BaseModel):
    """A durable conversation context owned by one agent, team or workflow."""

    session_id: str
    owner_type: Literal["agent", "team", "workflow"] = "agent"
    owner_id: str
    user_id: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    summary: SessionSummary | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MemoryRecord(BaseModel):
    """A durable fact about a user, independent of any session."""

    memory_id: str = Field(default_factory=lambda: str(uuid4()))
    memory: str
    topics: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkflowCheckpoint(BaseModel):
    """Progress of a workflow run after its last completed node.

    ``completed`` holds the paths of finished nodes (``loop#2/step`` for
    nodes inside loop iterations), ``decisions`` the branch each condition
    or router took and ``branches`` the results of finished parallel
    branches. ``written`` lists the state keys the run changed so far.
    """

    workflow_run_id: str
    workflow_id: str
    session_id: str
    user_id: str | None = None
    input: Any = None
    next_step: int = 0
    state: dict[str, Any] = Field(default_factory=dict)
    written: list[str] = Field(default_factory=list)
    last_output: Any = None
    step_outputs: dict[str, Any] = Field(default_factory=dict)
    completed: list[str] = Field(default_factory=list)
    decisions: dict[str, Any] = Field(default_factory=dict)
    branches: dict[str, dict[str, Any]] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)
