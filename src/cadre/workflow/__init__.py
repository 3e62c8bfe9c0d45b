"""Explicit step workflows over shared session state.

Usage::

    from cadre.workflow import FunctionStep, Parallel, StepOutput, Workflow

    workflow = Workflow(
        "report",
        [
            Parallel(
                "gather",
                [
                    FunctionStep("a", lambda s: StepOutput("A", {"a": 1}), writes=["a"]),
                    FunctionStep("b", lambda s: StepOutput("B", {"b": 2}), writes=["b"]),
                ],
            ),
        ],
    )
    result = workflow.run("go", session_id="s1")
"""

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
)
from cadre.workflow.workflow import (
    StepCompleted,
    StepStarted,
    Workflow,
    WorkflowCompleted,
    WorkflowFailed,
    WorkflowResult,
    WorkflowStarted,
    validate_steps,
)

__all__ = [
    "AgentStep",
    "Condition",
    "FunctionStep",
    "Loop",
    "Parallel",
    "Router",
    "Step",
    "StepCompleted",
    "StepInput",
    "StepOutput",
    "StepStarted",
    "Steps",
    "TeamStep",
    "Workflow",
    "WorkflowCompleted",
    "WorkflowFailed",
    "WorkflowResult",
    "WorkflowStarted",
    "validate_steps",
]
