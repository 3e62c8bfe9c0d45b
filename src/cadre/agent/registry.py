"""Named agent blueprints.

A blueprint is the recipe for an agent, not a live instance. Teams and the
CLI turn blueprints into agents with :func:`cadre.agent.builder.build_agent`,
so every run gets a fresh agent bound to the caller's storage and tools.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cadre.config.schema import NamedAgentConfig


@dataclass
class AgentBlueprint:
    """Everything needed to build one named agent.

    ``tools`` names entries of the tool registry the agent is built against;
    an empty list means every available tool.
    """

    name: str
    description: str
    instructions: str
    tools: list[str] = field(default_factory=list)
    model: str | None = None
    max_tool_iterations: int = 10
    search_knowledge: bool = False

    @classmethod
    def from_config(cls, cfg: NamedAgentConfig) -> AgentBlueprint:
        return cls(
            name=cfg.name,
            description=cfg.description,
            instructions=cfg.instructions,
            tools=list(cfg.tools),
            model=cfg.model,
            max_tool_iterations=cfg.max_tool_iterations,
            search_knowledge=cfg.search_knowledge,
        )


class AgentRegistry:
    """Blueprints addressed by agent name, in registration order."""

    def __init__(self, blueprints: list[AgentBlueprint] | None = None) -> None:
        self._blueprints: dict[str, AgentBlueprint] = {}
        for blueprint in blueprints or []:
            self.register(blueprint)

    def register(self, blueprint: AgentBlueprint) -> None:
        """Add a blueprint.

        Raises:
            ValueError: If the name is already taken
        """
        if blueprint.name in self._blueprints:
            raise ValueError(f"Agent '{blueprint.name}' already registered")
        self._blueprints[blueprint.name] = blueprint

    def get(self, name: str) -> AgentBlueprint:
        """Look up a blueprint.

        Raises:
            KeyError: If no agent has that name
        """
        try:
            return self._blueprints[name]
        except KeyError:
            raise KeyError(f"Agent '{name}' not found in registry") from None

    def has(self, name: str) -> bool:
        return name in self._blueprints

    def list_agents(self) -> list[AgentBlueprint]:
        return list(self._blueprints.values())

    @property
    def names(self) -> list[str]:
        return list(self._blueprints)

    def __contains__(self, name: object) -> bool:
        return name in self._blueprints

    def __iter__(self) -> Iterator[AgentBlueprint]:
        return iter(self._blueprints.values())

    def __len__(self) -> int:
        return len(self._blueprints)
