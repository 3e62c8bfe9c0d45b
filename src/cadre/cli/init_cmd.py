"""Initialize command - write a starter configuration."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from cadre.config.loader import DEFAULT_CONFIG_PATH, save_config
from cadre.config.schema import CadreConfig

console = Console()

BACKENDS = ["ollama", "openai", "vllm"]


def init_command(
    force: bool = False,
    non_interactive: bool = False,
    model: str | None = None,
    backend: str | None = None,
    path: str | None = None,
) -> Path:
    """Write a cadre configuration file.

    Args:
        force: Overwrite existing config if present
        non_interactive: Use defaults without prompting
        model: Model name to use
        backend: Inference backend (ollama, openai or vllm)
        path: Destination (defaults to ~/.cadre/cadre.yaml)

    Returns:
        The path written
    """
    target = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH

    console.print(
        Panel.fit(
            "[bold blue]cadre initialization[/bold blue]\nConfiguring your agents...",
            border_style="blue",
        )
    )

    if target.exists() and not force:
        console.print(f"\n[yellow]Config already exists at {target}[/yellow]")
        console.print(
            "Use [bold]--force[/bold] to overwrite, or [bold]cadre chat[/bold] to start using it."
        )
        raise typer.Exit(0)

    if backend is not None and backend not in BACKENDS:
        console.print(f"[red]Unknown backend '{backend}'. Choose one of: {', '.join(BACKENDS)}[/red]")
        raise typer.Exit(1)

    config = CadreConfig()
    if backend:
        config.inference.backend = backend  # type: ignore[assignment]
    if model:
        config.model.name = model

    if not non_interactive and Confirm.ask("\nCustomize settings?", default=False):
        config.inference.backend = Prompt.ask(  # type: ignore[assignment]
            "Inference backend", choices=BACKENDS, default=config.inference.backend
        )
        config.model.name = Prompt.ask("Model name", default=config.model.name)

        base_url = Prompt.ask("Base URL (blank for the backend default)", default="")
        config.inference.base_url = base_url or None

        temp_str = Prompt.ask("Temperature (0.0-2.0)", default=str(config.model.temperature))
        try:
            config.model.temperature = float(temp_str)
        except ValueError:
            console.print("[yellow]Invalid temperature, using default[/yellow]")

        config.storage.backend = Prompt.ask(  # type: ignore[assignment]
            "Session storage", choices=["sqlite", "memory"], default=config.storage.backend
        )
        config.memory.enabled = Confirm.ask("Remember facts about users?", default=False)

    written = save_config(config, target)
    console.print(f"\n[green]Configuration saved to {written}[/green]")

    console.print("\n[bold cyan]Setup Complete![/bold cyan]")
    console.print("\nNext steps:")
    console.print("  1. Ask a question: [bold]cadre run \"Hello\"[/bold]")
    console.print("  2. Start chatting: [bold]cadre chat[/bold]")
    return written
