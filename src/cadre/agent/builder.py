"""Build agents from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cadre.agent.loop import Agent
from cadre.agent.registry import AgentBlueprint, AgentRegistry
from cadre.config.loader import ConfigError
from cadre.context.assembler import CompressionPolicy
from cadre.llm.factory import create_llm_client
from cadre.storage.in_memory import InMemoryStorage
from cadre.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from cadre.config.schema import CadreConfig, NamedAgentConfig
    from cadre.knowledge.base import KnowledgeRetriever
    from cadre.llm.client import LLMClient
    from cadre.storage.base import SessionStore
    from cadre.team.coordinator import Team


def build_agent_registry(agent_configs: list[NamedAgentConfig]) -> AgentRegistry:
    """Create an AgentRegistry from the ``agents`` config section.

    Raises:
        ValueError: If two configured agents share a name
    """
    return AgentRegistry([AgentBlueprint.from_config(cfg) for cfg in agent_configs])


def _select_tools(blueprint: AgentBlueprint, available: ToolRegistry | None) -> ToolRegistry:
    selected = ToolRegistry()
    for name in blueprint.tools:
        if available is None or not available.has(name):
            raise ConfigError(f"Agent '{blueprint.name}' references unknown tool '{name}'")
        selected.register(available.resolve(name))
    return selected


def build_agent(
    config: CadreConfig,
    blueprint: AgentBlueprint | None = None,
    *,
    llm: LLMClient | None = None,
    tools: ToolRegistry | None = None,
    storage: SessionStore | None = None,
    knowledge: KnowledgeRetriever | None = None,
    **overrides: Any,
) -> Agent:
    """Create an Agent wired from configuration.

    Without a blueprint the agent gets the default instructions and every
    tool in ``tools``. A blueprint selects its tools from ``tools`` by name.

    Args:
        config: cadre configuration
        blueprint: Named agent to build
        llm: Model client (built from config if omitted)
        tools: Available tools
        storage: Session and memory store
        knowledge: Knowledge retriever
        **overrides: Extra Agent keyword arguments

    Raises:
        ConfigError: If the blueprint names a tool that is not available
    """
    agent_cfg = config.agent

    if blueprint is None:
        name = "assistant"
        instructions = agent_cfg.instructions
        selected = tools if tools is not None else ToolRegistry()
        max_tool_iterations = agent_cfg.max_tool_iterations
        search_knowledge = config.knowledge.enabled
        model = None
        description = ""
    else:
        name = blueprint.name
        instructions = blueprint.instructions
        selected = _select_tools(blueprint, tools)
        max_tool_iterations = blueprint.max_tool_iterations
        search_knowledge = blueprint.search_knowledge or config.knowledge.enabled
        model = blueprint.model
        description = blueprint.description

    compression = None
    if config.compression.enabled:
        compression = CompressionPolicy(
            max_context_tokens=config.compression.max_context_tokens,
            keep_last_runs=config.compression.keep_last_runs,
        )

    kwargs: dict[str, Any] = {
        "description": description,
        "instructions": instructions,
        "tools": selected,
        "storage": storage,
        "knowledge": knowledge,
        "search_knowledge": search_knowledge and knowledge is not None,
        "knowledge_top_k": config.knowledge.top_k,
        "add_history_to_context": agent_cfg.add_history_to_context,
        "num_history_runs": agent_cfg.num_history_runs,
        "add_session_state_to_context": agent_cfg.add_session_state_to_context,
        "compression": compression,
        "requires_confirmation": agent_cfg.requires_confirmation,
        "max_tool_iterations": max_tool_iterations,
        "model_timeout": agent_cfg.model_timeout,
        "tool_timeout": agent_cfg.tool_timeout,
        "retrieval_timeout": agent_cfg.retrieval_timeout,
        "enable_user_memories": config.memory.enabled,
        "memory_mode": config.memory.mode,
        "summary_every_n_runs": config.summary.every_n_runs if config.summary.enabled else None,
    }
    kwargs.update(overrides)

    return Agent(llm or create_llm_client(config, model=model), name, **kwargs)


def build_team(
    config: CadreConfig,
    members: list[str] | None = None,
    *,
    name: str = "team",
    llm: LLMClient | None = None,
    tools: ToolRegistry | None = None,
    storage: SessionStore | None = None,
    knowledge: KnowledgeRetriever | None = None,
    **member_options: Any,
) -> Team:
    """Create a Team whose members are named agents from the config.

    Args:
        config: cadre configuration
        members: Agent names to include (all configured agents if omitted)
        name: Team name
        llm: Model client shared by the leader and members without a model override
        tools: Tools the member blueprints select from
        storage: Store shared by the team and its members (in-memory if omitted)
        knowledge: Knowledge retriever for members that search it
        **member_options: Extra Agent keyword arguments for every member

    Raises:
        ConfigError: If a member is not configured, or no members remain
    """
    from cadre.team.coordinator import Team

    registry = build_agent_registry(config.agents)
    names = members if members is not None else registry.names
    missing = [m for m in names if m not in registry]
    if missing:
        raise ConfigError(f"Unknown team member(s): {', '.join(missing)}")
    if not names:
        raise ConfigError("A team needs at least one configured agent")
    if storage is None:
        storage = InMemoryStorage()

    agents = []
    for member in names:
        blueprint = registry.get(member)
        member_llm = llm if llm is not None and blueprint.model is None else None
        agents.append(
            build_agent(
                config,
                blueprint,
                llm=member_llm,
                tools=tools,
                storage=storage,
                knowledge=knowledge,
                **member_options,
            )
        )

    return Team(
        llm or create_llm_client(config),
        agents,
        name,
        storage=storage,
        max_rounds=config.team.max_rounds,
        share_session_with_members=config.team.share_session_with_members,
    )
