"""One-shot run command."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.prompt import Confirm

from cadre.agent.events import (
    ContentDelta,
    RunCompleted,
    RunFailed,
    ToolCallCompleted,
    ToolCallStarted,
)
from cadre.agent.state import RunResult
from cadre.cli.runtime import create_agent, create_team, load_or_exit, open_storage
from cadre.team.coordinator import DelegationCompleted, DelegationStarted

if TYPE_CHECKING:
    from cadre.agent.loop import Agent
    from cadre.team.coordinator import Team
    from cadre.tools.approval import ApprovalRequest

console = Console()


def confirm_tool_call(request: ApprovalRequest) -> bool:
    """Ask on the terminal whether a gated tool call may run."""
    console.print(f"\n[yellow]Approval needed:[/yellow] {request.tool_name}")
    if request.description:
        console.print(f"[dim]{request.description}[/dim]")
    console.print(f"Arguments: {request.arguments}")
    return Confirm.ask("Run this tool?", default=False)


def print_result(result: RunResult, *, show_content: bool = True) -> None:
    """Print a run's content, warnings and error."""
    if result.error is not None:
        console.print(f"[red]Run failed ({result.error.code}): {result.error.message}[/red]")
        return

    if show_content:
        content = result.content
        if isinstance(content, str):
            console.print(Markdown(content))
        else:
            console.print(content)

    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {warning.code}: {warning.message}")


async def stream_run(
    agent: Agent | Team, prompt: str, session_id: str | None, user_id: str | None
) -> RunResult:
    """Run with streamed output, printing deltas, tool calls and delegations as they arrive."""
    result: RunResult | None = None
    async for event in agent.astream(prompt, session_id=session_id, user_id=user_id):
        if isinstance(event, ContentDelta):
            console.print(event.content, end="", markup=False, highlight=False)
        elif isinstance(event, ToolCallStarted):
            console.print(f"\n[dim]-> {event.name}({event.arguments})[/dim]")
        elif isinstance(event, ToolCallCompleted):
            console.print(f"[dim]<- {event.result.name}: {event.result.status}[/dim]")
        elif isinstance(event, DelegationStarted):
            console.print(f"[dim]round {event.round} -> {event.member}: {event.task}[/dim]")
        elif isinstance(event, DelegationCompleted):
            status = "ok" if event.result is not None and event.result.succeeded else "failed"
            console.print(f"[dim]round {event.round} <- {event.member} ({status})[/dim]")
        elif isinstance(event, (RunCompleted, RunFailed)):
            result = event.result
    console.print()
    await agent.wait_for_background()
    assert result is not None
    return result


async def _blocking_run(
    agent: Agent | Team, prompt: str, session_id: str | None, user_id: str | None
) -> RunResult:
    try:
        with console.status("[bold green]Thinking...[/bold green]"):
            return await agent.arun(prompt, session_id=session_id, user_id=user_id)
    finally:
        await agent.wait_for_background()


def run_command(
    prompt: str,
    agent_name: str | None = None,
    session_id: str | None = None,
    user_id: str | None = None,
    stream: bool = False,
    config_path: str | None = None,
    team: bool = False,
) -> None:
    """Run a single prompt and print the result.

    Args:
        prompt: User input
        agent_name: Named agent from config (default agent if omitted)
        session_id: Session to continue (new session if omitted)
        user_id: Active user
        stream: Print output as it is generated
        config_path: Optional path to config file
        team: Run the configured agents as a team instead of one agent
    """
    config = load_or_exit(config_path)
    storage = open_storage(config)
    if team:
        runner: Agent | Team = create_team(config, storage, confirm_callback=confirm_tool_call)
    else:
        runner = create_agent(config, storage, agent_name, confirm_callback=confirm_tool_call)

    if stream:
        result = asyncio.run(stream_run(runner, prompt, session_id, user_id))
        print_result(result, show_content=team)
    else:
        result = asyncio.run(_blocking_run(runner, prompt, session_id, user_id))
        print_result(result)

    console.print(f"[dim]session {result.session_id}[/dim]")
    if not result.succeeded:
        raise typer.Exit(1)
