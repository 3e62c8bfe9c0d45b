"""Session inspection commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from cadre.cli.runtime import load_or_exit, open_storage
from cadre.storage.schema import RunStatus

console = Console()


def list_sessions(config_path: str | None = None, user_id: str | None = None, limit: int = 20) -> None:
    """List recent sessions, newest first."""
    storage = open_storage(load_or_exit(config_path))
    sessions = storage.list_sessions(user_id=user_id, limit=limit)

    if not sessions:
        console.print("[dim]No sessions found.[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Owner")
    table.add_column("User")
    table.add_column("Runs", justify="right")
    table.add_column("Updated")

    for session in sessions:
        table.add_row(
            session.session_id,
            f"{session.owner_type}:{session.owner_id}",
            session.user_id or "-",
            str(len(storage.load_runs(session.session_id))),
            session.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def show_session(session_id: str, config_path: str | None = None, limit: int | None = None) -> None:
    """Show a session's state, summary and runs."""
    storage = open_storage(load_or_exit(config_path))
    session = storage.load_session(session_id)
    if session is None:
        console.print(f"[red]Session '{session_id}' not found[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Session[/bold] {session.session_id}")
    console.print(f"  Owner: {session.owner_type}:{session.owner_id}")
    console.print(f"  User: {session.user_id or '-'}")
    console.print(f"  State: {session.state}")
    if session.summary is not None:
        console.print(f"  Summary: {session.summary.summary}")

    for run in storage.load_runs(session_id, limit=limit):
        color = "green" if run.status == RunStatus.COMPLETED else "red"
        console.print(
            f"\n[{color}]{run.status}[/{color}] {run.run_id} "
            f"[dim]{run.created_at:%Y-%m-%d %H:%M:%S} by {run.runner_id}[/dim]"
        )
        console.print(f"  [cyan]input:[/cyan] {run.input}")
        if run.error is not None:
            console.print(f"  [red]error:[/red] {run.error.get('code')}: {run.error.get('message')}")
        else:
            console.print(f"  [cyan]output:[/cyan] {run.output}")
        for warning in run.warnings:
            console.print(f"  [yellow]warning:[/yellow] {warning.get('code')}: {warning.get('message')}")


def delete_session(session_id: str, config_path: str | None = None, yes: bool = False) -> None:
    """Delete a session and its runs."""
    storage = open_storage(load_or_exit(config_path))

    if not yes and not typer.confirm(f"Delete session '{session_id}'?", default=False):
        console.print("[dim]Cancelled.[/dim]")
        return

    if storage.delete_session(session_id):
        console.print(f"[green]Deleted session {session_id}[/green]")
    else:
        console.print(f"[red]Session '{session_id}' not found[/red]")
        raise typer.Exit(1)


def prune_sessions(days: int, config_path: str | None = None, yes: bool = False) -> None:
    """Delete sessions not updated in the last ``days`` days."""
    if days < 0:
        console.print("[red]--days must not be negative[/red]")
        raise typer.Exit(1)
    storage = open_storage(load_or_exit(config_path))

    if not yes and not typer.confirm(f"Delete sessions idle for more than {days} days?", default=False):
        console.print("[dim]Cancelled.[/dim]")
        return

    removed = storage.prune_old_sessions(days)
    console.print(f"[green]Pruned {removed} session(s)[/green]")
