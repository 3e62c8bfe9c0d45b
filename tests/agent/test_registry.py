"""Tests for the agent registry and building agents from configuration."""

import pytest

from cadre.agent import AgentBlueprint, AgentRegistry, build_agent, build_agent_registry, build_team
from cadre.config import CadreConfig, ConfigError
from cadre.config.schema import NamedAgentConfig
from cadre.llm import OllamaClient
from cadre.tools import ToolRegistry


def _make_blueprint(name: str = "test_agent", tools: list[str] | None = None) -> AgentBlueprint:
    return AgentBlueprint(
        name=name,
        description="A test agent",
        instructions="You are a test agent.",
        tools=tools or [],
    )


def lookup(term: str) -> str:
    """Look up a term."""
    return term


def shout(text: str) -> str:
    """Upper-case text."""
    return text.upper()


class TestAgentBlueprint:
    def test_defaults(self):
        bp = AgentBlueprint(name="a", description="b", instructions="c")
        assert bp.max_tool_iterations == 10
        assert bp.model is None
        assert bp.search_knowledge is False
        assert bp.tools == []


class TestAgentRegistry:
    def test_register_and_get(self):
        registry = AgentRegistry()
        bp = _make_blueprint("researcher")
        registry.register(bp)
        assert registry.get("researcher") is bp

    def test_has(self):
        registry = AgentRegistry()
        registry.register(_make_blueprint("coder"))
        assert registry.has("coder") is True
        assert registry.has("nonexistent") is False

    def test_list_and_names(self):
        registry = AgentRegistry()
        registry.register(_make_blueprint("researcher"))
        registry.register(_make_blueprint("coder"))
        assert len(registry.list_agents()) == 2
        assert registry.names == ["researcher", "coder"]

    def test_duplicate_raises(self):
        registry = AgentRegistry()
        registry.register(_make_blueprint("a"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_make_blueprint("a"))

    def test_get_missing_raises(self):
        with pytest.raises(KeyError, match="not found"):
            AgentRegistry().get("ghost")

    def test_container_protocol(self):
        registry = AgentRegistry([_make_blueprint("researcher"), _make_blueprint("coder")])

        assert "coder" in registry
        assert "ghost" not in registry
        assert len(registry) == 2
        assert [bp.name for bp in registry] == ["researcher", "coder"]

    def test_blueprint_from_config(self):
        cfg = NamedAgentConfig(name="critic", instructions="Find flaws.", max_tool_iterations=3)

        bp = AgentBlueprint.from_config(cfg)

        assert bp.name == "critic"
        assert bp.description == ""
        assert bp.max_tool_iterations == 3

    def test_duplicate_config_names_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            build_agent_registry(
                [
                    NamedAgentConfig(name="a", instructions="x"),
                    NamedAgentConfig(name="a", instructions="y"),
                ]
            )

    def test_build_from_config(self):
        registry = build_agent_registry(
            [
                NamedAgentConfig(name="researcher", instructions="Research.", tools=["lookup"]),
                NamedAgentConfig(name="writer", instructions="Write.", model="llama3.2:3b"),
            ]
        )

        assert registry.names == ["researcher", "writer"]
        assert registry.get("researcher").tools == ["lookup"]
        assert registry.get("writer").model == "llama3.2:3b"


class TestBuildAgent:
    def test_default_agent(self, make_llm, storage):
        config = CadreConfig()
        tools = ToolRegistry([lookup, shout])

        agent = build_agent(config, llm=make_llm([]), tools=tools, storage=storage)

        assert agent.name == "assistant"
        assert agent.instructions == config.agent.instructions
        assert agent.tools.names == ["lookup", "shout"]
        assert agent.storage is storage
        assert agent.max_tool_iterations == config.agent.max_tool_iterations
        assert agent.memory_manager is None
        assert agent.summarizer is None

    def test_blueprint_selects_tools(self, make_llm):
        blueprint = _make_blueprint("researcher", tools=["lookup"])

        agent = build_agent(CadreConfig(), blueprint, llm=make_llm([]), tools=ToolRegistry([lookup, shout]))

        assert agent.name == "researcher"
        assert agent.description == "A test agent"
        assert agent.tools.names == ["lookup"]

    def test_unknown_tool_is_config_error(self, make_llm):
        blueprint = _make_blueprint("researcher", tools=["teleport"])

        with pytest.raises(ConfigError, match="teleport"):
            build_agent(CadreConfig(), blueprint, llm=make_llm([]), tools=ToolRegistry([lookup]))

    def test_memory_summary_and_compression_from_config(self, make_llm, storage):
        config = CadreConfig(
            memory={"enabled": True, "mode": "awaited"},
            summary={"enabled": True, "every_n_runs": 3},
            compression={"enabled": True, "max_context_tokens": 1000, "keep_last_runs": 1},
        )

        agent = build_agent(config, llm=make_llm([]), storage=storage)

        assert agent.memory_manager is not None
        assert agent.memory_mode == "awaited"
        assert agent.summary_every_n_runs == 3
        assert agent.assembler.compression.max_context_tokens == 1000

    def test_overrides(self, make_llm):
        agent = build_agent(CadreConfig(), llm=make_llm([]), max_tool_iterations=2, instructions="Terse.")

        assert agent.max_tool_iterations == 2
        assert agent.instructions == "Terse."

    def test_builds_llm_from_config(self):
        blueprint = AgentBlueprint(name="w", description="", instructions="", model="llama3.2:3b")

        agent = build_agent(CadreConfig(), blueprint)

        assert isinstance(agent.llm, OllamaClient)
        assert agent.llm.model == "llama3.2:3b"


class TestBuildTeam:
    def config(self, **team):
        return CadreConfig(
            agents=[
                {"name": "researcher", "instructions": "Research.", "description": "Finds facts"},
                {"name": "writer", "instructions": "Write.", "model": "llama3.2:3b"},
            ],
            team=team,
        )

    def test_all_configured_agents(self, make_llm, storage):
        llm = make_llm([])

        team = build_team(self.config(max_rounds=2), llm=llm, storage=storage)

        assert list(team.members) == ["researcher", "writer"]
        assert team.max_rounds == 2
        assert team.storage is storage
        assert team.members["researcher"].llm is llm
        assert team.members["writer"].llm is not llm
        assert "researcher: Finds facts" in team.roster()

    def test_selected_members_share_session(self, make_llm):
        team = build_team(
            self.config(share_session_with_members=True), ["researcher"], llm=make_llm([])
        )

        assert list(team.members) == ["researcher"]
        assert team.members["researcher"].storage is team.storage

    def test_unknown_member(self, make_llm):
        with pytest.raises(ConfigError, match="ghost"):
            build_team(self.config(), ["researcher", "ghost"], llm=make_llm([]))

    def test_no_agents_configured(self, make_llm):
        with pytest.raises(ConfigError, match="at least one"):
            build_team(CadreConfig(), llm=make_llm([]))
