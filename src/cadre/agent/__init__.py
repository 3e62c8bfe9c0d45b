"""Agent run engine.

An :class:`Agent` drives one run through input validation, context
assembly, the model/tool loop, output validation and persistence. The same
event generator backs every entry point::

    from cadre.agent import Agent
    from cadre.llm import create_llm_client
    from cadre.config import CadreConfig

    agent = Agent(create_llm_client(CadreConfig()), tools=[get_weather])
    result = agent.run("What's the weather in Lisbon?", session_id="s1")

    async for event in agent.astream("And tomorrow?", session_id="s1"):
        ...
"""

from cadre.agent.builder import build_agent, build_agent_registry, build_team
from cadre.agent.cancellation import CancellationToken
from cadre.agent.events import (
    ContentDelta,
    RunCompleted,
    RunEvent,
    RunFailed,
    RunStarted,
    StateChanged,
    ToolApprovalRequested,
    ToolCallCompleted,
    ToolCallStarted,
    WarningRaised,
)
from cadre.agent.guardrails import Guardrail, GuardrailAction, GuardrailResult
from cadre.agent.loop import Agent
from cadre.agent.registry import AgentBlueprint, AgentRegistry
from cadre.agent.state import RunError, RunResult, RunState

__all__ = [
    "Agent",
    "AgentBlueprint",
    "AgentRegistry",
    "CancellationToken",
    "ContentDelta",
    "Guardrail",
    "GuardrailAction",
    "GuardrailResult",
    "RunCompleted",
    "RunError",
    "RunEvent",
    "RunFailed",
    "RunResult",
    "RunStarted",
    "RunState",
    "StateChanged",
    "ToolApprovalRequested",
    "ToolCallCompleted",
    "ToolCallStarted",
    "WarningRaised",
    "build_agent",
    "build_agent_registry",
    "build_team",
]
