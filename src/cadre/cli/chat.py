"""Interactive chat REPL command."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import uuid4

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from cadre.cli.run_cmd import confirm_tool_call, print_result, stream_run
from cadre.cli.runtime import create_agent, load_or_exit, open_storage

if TYPE_CHECKING:
    from cadre.agent.loop import Agent
    from cadre.config.schema import CadreConfig
    from cadre.storage.base import SessionStore

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """What the REPL is talking to, and in which session."""

    config: CadreConfig
    agent: Agent
    storage: SessionStore
    session_id: str
    user_id: str | None = None
    stream: bool = True


def chat_command(
    config_path: str | None = None,
    agent_name: str | None = None,
    session_id: str | None = None,
    user_id: str | None = None,
    stream: bool = True,
) -> None:
    """Chat with an agent, one run per message, in a persistent session.

    Args:
        config_path: Optional path to config file
        agent_name: Named agent from config
        session_id: Session to resume (new session if omitted)
        user_id: Active user
        stream: Print replies as they are generated
    """
    config = load_or_exit(config_path)
    storage = open_storage(config)
    chat = ChatSession(
        config=config,
        agent=create_agent(config, storage, agent_name, confirm_callback=confirm_tool_call),
        storage=storage,
        session_id=session_id or str(uuid4()),
        user_id=user_id,
        stream=stream,
    )

    resumed = storage.load_session(chat.session_id) is not None
    console.print(
        Panel.fit(
            f"[bold blue]cadre chat[/bold blue] with [green]{chat.agent.name}[/green]"
            f" ({config.model.name})\n"
            f"{'Resuming' if resumed else 'New'} session {chat.session_id}\n"
            "[dim]/help lists commands, /exit leaves[/dim]",
            border_style="blue",
        )
    )

    asyncio.run(_chat_loop(chat))


async def _chat_loop(chat: ChatSession) -> None:
    while True:
        try:
            text = await asyncio.to_thread(Prompt.ask, "\n[bold cyan]You[/bold cyan]")
        except (EOFError, KeyboardInterrupt):
            break

        text = text.strip()
        if not text:
            continue
        if text.startswith("/"):
            if _dispatch(chat, text):
                break
            continue

        try:
            await _turn(chat, text)
        except KeyboardInterrupt:
            console.print("\n[yellow]Reply interrupted[/yellow]")
            if Confirm.ask("Leave the chat?", default=False):
                break
        except Exception as e:
            logger.debug("Chat turn failed", exc_info=True)
            console.print(f"\n[red]{type(e).__name__}: {e}[/red]")

    await chat.agent.wait_for_background()
    console.print(f"\n[dim]Session {chat.session_id} saved.[/dim]")


async def _turn(chat: ChatSession, text: str) -> None:
    console.print(f"\n[bold green]{chat.agent.name}[/bold green]")
    if chat.stream:
        result = await stream_run(chat.agent, text, chat.session_id, chat.user_id)
        print_result(result, show_content=False)
        return

    with console.status("[green]Working...[/green]", spinner="dots"):
        result = await chat.agent.arun(text, session_id=chat.session_id, user_id=chat.user_id)
    print_result(result)


def _show_help(chat: ChatSession) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    for name, (_, description) in COMMANDS.items():
        table.add_row(f"[cyan]{name}[/cyan]", description)
    console.print(table)


def _show_agent(chat: ChatSession) -> None:
    console.print(f"[cyan]Agent:[/cyan] {chat.agent.name}")
    console.print(f"[cyan]Model:[/cyan] {chat.config.model.name} via {chat.config.inference.backend}")
    console.print(f"[cyan]Tool iterations:[/cyan] {chat.agent.max_tool_iterations}")
    if not len(chat.agent.tools):
        console.print("[cyan]Tools:[/cyan] none")
        return
    console.print("[cyan]Tools:[/cyan]")
    for t in chat.agent.tools:
        gate = " [yellow](needs approval)[/yellow]" if t.schema.requires_confirmation else ""
        console.print(f"  {t.name}{gate}  [dim]{t.schema.description[:60]}[/dim]")


def _show_session(chat: ChatSession) -> None:
    session = chat.storage.load_session(chat.session_id)
    console.print(f"[cyan]Session:[/cyan] {chat.session_id}")
    if session is None:
        console.print("[dim]Nothing stored yet[/dim]")
        return
    console.print(f"[cyan]Runs:[/cyan] {len(chat.storage.load_runs(chat.session_id))}")
    console.print(f"[cyan]State:[/cyan] {session.state or '{}'}")
    if session.summary is not None:
        console.print(f"[cyan]Summary:[/cyan] {session.summary.summary}")


def _show_memories(chat: ChatSession) -> None:
    store = chat.agent.memory_store
    if chat.user_id is None or store is None:
        console.print("[dim]Memories need a user (start with --user)[/dim]")
        return
    memories = store.list_memories(chat.user_id)
    if not memories:
        console.print(f"[dim]Nothing remembered about {chat.user_id}[/dim]")
    for memory in memories:
        topics = f" [dim]({', '.join(memory.topics)})[/dim]" if memory.topics else ""
        console.print(f"  - {memory.memory}{topics}")


def _new_session(chat: ChatSession) -> None:
    chat.session_id = str(uuid4())
    console.print(f"[green]Started session {chat.session_id}[/green]")


COMMANDS: dict[str, tuple[Callable[[ChatSession], None] | None, str]] = {
    "/help": (_show_help, "List commands"),
    "/agent": (_show_agent, "Show the agent, model and tools"),
    "/session": (_show_session, "Show session runs, state and summary"),
    "/memories": (_show_memories, "Show what is remembered about the user"),
    "/new": (_new_session, "Start a fresh session"),
    "/clear": (lambda chat: console.clear(), "Clear the screen"),
    "/exit": (None, "Leave the chat"),
}


def _dispatch(chat: ChatSession, command: str) -> bool:
    """Run a slash command. Returns True when the chat should end."""
    name = command.split()[0].lower()
    if name in ("/quit", "/q"):
        name = "/exit"

    entry = COMMANDS.get(name)
    if entry is None:
        console.print(f"[red]Unknown command {name}[/red] [dim](/help lists commands)[/dim]")
        return False

    handler, _ = entry
    if handler is None:
        return True
    handler(chat)
    return False
