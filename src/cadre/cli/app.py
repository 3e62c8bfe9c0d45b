"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from cadre import __version__

app = typer.Typer(
    name="cadre",
    help="cadre - agents, teams and workflows over persistent sessions",
    no_args_is_help=True,
)

console = Console()


@app.command()
def version():
    """Show cadre version."""
    console.print(f"cadre version {__version__}")


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", "-y", help="Use defaults without prompting"
    ),
    model: str = typer.Option(None, "--model", "-m", help="Model name"),
    backend: str = typer.Option(None, "--backend", "-b", help="ollama, openai or vllm"),
    path: str = typer.Option(None, "--path", "-p", help="Where to write the config"),
):
    """Write a starter configuration file."""
    from cadre.cli.init_cmd import init_command

    init_command(
        force=force, non_interactive=non_interactive, model=model, backend=backend, path=path
    )


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Input for the agent"),
    agent: str = typer.Option(None, "--agent", "-a", help="Named agent from the config"),
    session: str = typer.Option(None, "--session", "-s", help="Session to continue"),
    team: bool = typer.Option(False, "--team", "-t", help="Run the configured agents as a team"),
    user: str = typer.Option(None, "--user", "-u", help="Active user id"),
    stream: bool = typer.Option(False, "--stream", help="Print output as it is generated"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.cadre/cadre.yaml)",
    ),
):
    """Run one prompt through an agent or a team."""
    from cadre.cli.run_cmd import run_command

    run_command(
        prompt,
        agent_name=agent,
        session_id=session,
        user_id=user,
        stream=stream,
        config_path=config_path,
        team=team,
    )


@app.command()
def chat(
    agent: str = typer.Option(None, "--agent", "-a", help="Named agent from the config"),
    session: str = typer.Option(None, "--session", "-s", help="Session to resume"),
    user: str = typer.Option(None, "--user", "-u", help="Active user id"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream replies"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.cadre/cadre.yaml)",
    ),
):
    """Start interactive chat session."""
    from cadre.cli.chat import chat_command

    chat_command(
        config_path=config_path,
        agent_name=agent,
        session_id=session,
        user_id=user,
        stream=stream,
    )


# Session commands
sessions_app = typer.Typer(help="Inspect, delete and prune stored sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list(
    user: str = typer.Option(None, "--user", "-u", help="Only sessions of this user"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum sessions to show"),
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List recent sessions."""
    from cadre.cli.sessions_cmd import list_sessions

    list_sessions(config_path=config_path, user_id=user, limit=limit)


@sessions_app.command("show")
def sessions_show(
    session_id: str = typer.Argument(..., help="Session id"),
    limit: int = typer.Option(None, "--limit", "-n", help="Only the last N runs"),
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Show a session's state and runs."""
    from cadre.cli.sessions_cmd import show_session

    show_session(session_id, config_path=config_path, limit=limit)


@sessions_app.command("delete")
def sessions_delete(
    session_id: str = typer.Argument(..., help="Session id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Delete a session and its runs."""
    from cadre.cli.sessions_cmd import delete_session

    delete_session(session_id, config_path=config_path, yes=yes)


@sessions_app.command("prune")
def sessions_prune(
    days: int = typer.Option(30, "--days", "-d", help="Delete sessions idle for longer than this"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Delete sessions not updated in the last N days."""
    from cadre.cli.sessions_cmd import prune_sessions

    prune_sessions(days, config_path=config_path, yes=yes)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
