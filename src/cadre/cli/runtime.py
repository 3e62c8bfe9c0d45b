"""Wiring shared by CLI commands: config, storage, tools, agents."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console

from cadre.agent.builder import build_agent, build_agent_registry, build_team
from cadre.config.loader import ConfigError, load_config
from cadre.logging import setup_logging
from cadre.storage import create_storage
from cadre.tools.filesystem import filesystem_tools
from cadre.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from cadre.agent.loop import Agent
    from cadre.config.schema import CadreConfig
    from cadre.knowledge.base import KnowledgeRetriever
    from cadre.storage.base import SessionStore
    from cadre.team.coordinator import Team
    from cadre.tools.approval import ApprovalCallback

console = Console()
logger = logging.getLogger(__name__)


def load_or_exit(config_path: str | None) -> CadreConfig:
    """Load config and set up logging, exiting with a message on errors."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        console.print("Run [bold]cadre init[/bold] to create a config file.")
        raise typer.Exit(1) from e

    setup_logging(config.logging.level, rich=config.logging.rich)
    return config


def available_tools(config: CadreConfig) -> ToolRegistry:
    if config.tools.filesystem:
        return filesystem_tools()
    return ToolRegistry()


def create_agent(
    config: CadreConfig,
    storage: SessionStore,
    agent_name: str | None = None,
    confirm_callback: ApprovalCallback | None = None,
) -> Agent:
    """Build the default agent or a named blueprint from config.

    Raises:
        typer.Exit: If the named agent is not configured
    """
    blueprint = None
    if agent_name:
        registry = build_agent_registry(config.agents)
        if agent_name not in registry:
            known = ", ".join(registry.names) or "none"
            console.print(f"[red]Unknown agent '{agent_name}'. Configured agents: {known}[/red]")
            raise typer.Exit(1)
        blueprint = registry.get(agent_name)

    return build_agent(
        config,
        blueprint,
        tools=available_tools(config),
        storage=storage,
        knowledge=_knowledge(config),
        confirm_callback=confirm_callback,
    )


def create_team(
    config: CadreConfig,
    storage: SessionStore,
    confirm_callback: ApprovalCallback | None = None,
) -> Team:
    """Build a team of every configured agent.

    Raises:
        typer.Exit: If no agents are configured or one is misconfigured
    """
    try:
        return build_team(
            config,
            tools=available_tools(config),
            storage=storage,
            knowledge=_knowledge(config),
            confirm_callback=confirm_callback,
        )
    except ConfigError as e:
        console.print(f"[red]Cannot build team: {e}[/red]")
        raise typer.Exit(1) from e


def _knowledge(config: CadreConfig) -> KnowledgeRetriever | None:
    if not config.knowledge.enabled:
        return None
    from cadre.knowledge import create_knowledge_base

    return create_knowledge_base(config.knowledge)


def open_storage(config: CadreConfig) -> SessionStore:
    logger.debug("Opening %s storage", config.storage.backend)
    return create_storage(config.storage)
