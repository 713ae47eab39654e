"""Slash-command routing and handlers for the interactive session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .chat import ChatService
from .config import REASONING_LEVELS, Config
from .errors import ChatError, NotFoundError
from .rendering import (
    ACCENT, DIM, SUCCESS, WARN,
    render_agents, render_error, render_history, render_threads,
)

SLASH_COMMANDS = [
    "/help", "/new", "/threads", "/open", "/history", "/rename", "/delete",
    "/agents", "/agent", "/reasoning", "/models", "/config", "/quit",
]
_SLASH_ALIASES = {"/h": "/help", "/?": "/help", "/exit": "/quit", "/q": "/quit"}

HELP_ROWS = [
    ("/new", "start a new thread (created on your next message)"),
    ("/threads", "list threads, most recent first"),
    ("/open ID", "switch to a thread and show its history"),
    ("/history [reasoning] [N]", "show the current thread, or its newest N messages"),
    ("/rename TITLE", "rename the current thread"),
    ("/delete ID", "delete a thread and its messages"),
    ("/agents", "list agents"),
    ("/agent ID|none", "bind an agent to the current or next thread"),
    ("/reasoning LEVEL", "instant, low, medium or high"),
    ("/models", "list models offered by the endpoint"),
    ("/config", "show configuration"),
    ("/quit", "exit"),
]


@dataclass
class ReplState:
    """What the interactive session currently points at."""
    thread_id: Optional[int] = None
    agent_id: Optional[int] = None
    reasoning_level: str = "medium"


@dataclass
class CommandContext:
    console: Console
    service: ChatService
    config: Config
    state: ReplState


CommandHandler = Callable[[CommandContext, list[str]], str]


def _resolve_command(raw_cmd: str) -> str:
    """Resolve abbreviated slash commands via exact/alias/prefix matching."""
    cmd = raw_cmd.lower()
    if cmd in SLASH_COMMANDS:
        return cmd
    if cmd in _SLASH_ALIASES:
        return _SLASH_ALIASES[cmd]
    matches = [candidate for candidate in SLASH_COMMANDS if candidate.startswith(cmd)]
    if len(matches) == 1:
        return matches[0]
    return cmd


def _parse_id(ctx: CommandContext, args: list[str], usage: str) -> Optional[int]:
    if not args:
        ctx.console.print(f"  [{WARN}]Usage: {usage}[/{WARN}]")
        return None
    try:
        return int(args[0])
    except ValueError:
        ctx.console.print(f"  [{WARN}]Not a number: {args[0]}[/{WARN}]")
        return None


def handle_command(command: str, *, console: Console, service: ChatService,
                   config: Config, state: ReplState) -> str:
    """Handle one slash command string. Returns ``"quit"`` to leave the loop."""
    parts = command.split()
    if not parts:
        return ""

    cmd = _resolve_command(parts[0])
    handler = COMMAND_HANDLERS.get(cmd)
    if not handler:
        console.print(f"  [{WARN}]Unknown: {cmd}. Try /help[/{WARN}]")
        return ""

    ctx = CommandContext(console=console, service=service, config=config, state=state)
    try:
        return handler(ctx, parts[1:])
    except ChatError as e:
        render_error(console, str(e))
        return ""


def show_config_panel(console: Console, config: Config) -> None:
    table = Table(show_header=False, padding=(0, 2), box=None)
    table.add_column("Key", style=f"bold {ACCENT}", min_width=14)
    table.add_column("Value", style="#E6EDF3")
    for key, value in config.summary().items():
        table.add_row(key, str(value))
    console.print(Panel(table, title=f"[bold {ACCENT}] Configuration [/bold {ACCENT}]",
                        title_align="left", border_style=DIM, padding=(0, 1)))


# ── Handlers ───────────────────────────────────────

def _cmd_quit(ctx: CommandContext, args: list[str]) -> str:
    ctx.console.print(f"[{DIM}]Goodbye![/{DIM}]")
    return "quit"


def _cmd_help(ctx: CommandContext, args: list[str]) -> str:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style=f"bold {ACCENT}")
    table.add_column(style=DIM)
    for name, desc in HELP_ROWS:
        table.add_row(name, desc)
    ctx.console.print(table)
    return ""


def _cmd_new(ctx: CommandContext, args: list[str]) -> str:
    ctx.state.thread_id = None
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] New thread")
    return ""


def _cmd_threads(ctx: CommandContext, args: list[str]) -> str:
    render_threads(ctx.console, ctx.service.store.list_threads(), current=ctx.state.thread_id)
    return ""


def _cmd_open(ctx: CommandContext, args: list[str]) -> str:
    thread_id = _parse_id(ctx, args, "/open ID")
    if thread_id is None:
        return ""
    thread = ctx.service.store.get_thread(thread_id)
    if thread is None:
        raise NotFoundError("Thread", thread_id)
    ctx.state.thread_id = thread.id
    ctx.state.agent_id = thread.agent_id
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] [bold]{thread.title or '(untitled)'}[/bold]")
    render_history(ctx.console, ctx.service.store.list_messages(thread.id))
    return ""


def _cmd_history(ctx: CommandContext, args: list[str]) -> str:
    if ctx.state.thread_id is None:
        ctx.console.print(f"  [{DIM}]No thread selected.[/{DIM}]")
        return ""
    show_reasoning = any(arg.lower().startswith("r") for arg in args)
    counts = [int(arg) for arg in args if arg.isdigit()]
    store = ctx.service.store
    if counts and counts[0] > 0:
        messages = store.recent_messages(ctx.state.thread_id, counts[0])
    else:
        messages = store.list_messages(ctx.state.thread_id)
    render_history(ctx.console, messages, show_reasoning=show_reasoning)
    return ""


def _cmd_rename(ctx: CommandContext, args: list[str]) -> str:
    if ctx.state.thread_id is None:
        ctx.console.print(f"  [{DIM}]No thread selected.[/{DIM}]")
        return ""
    title = " ".join(args).strip()
    if not title:
        ctx.console.print(f"  [{WARN}]Usage: /rename TITLE[/{WARN}]")
        return ""
    thread = ctx.service.store.update_thread(ctx.state.thread_id, title=title)
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Renamed → [bold]{thread.title}[/bold]")
    return ""


def _cmd_delete(ctx: CommandContext, args: list[str]) -> str:
    thread_id = _parse_id(ctx, args, "/delete ID")
    if thread_id is None:
        return ""
    ctx.service.store.delete_thread(thread_id)
    if ctx.state.thread_id == thread_id:
        ctx.state.thread_id = None
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Deleted thread {thread_id}")
    return ""


def _cmd_agents(ctx: CommandContext, args: list[str]) -> str:
    render_agents(ctx.console, ctx.service.store.list_agents())
    return ""


def _cmd_agent(ctx: CommandContext, args: list[str]) -> str:
    if args and args[0].lower() == "none":
        agent = None
    else:
        agent_id = _parse_id(ctx, args, "/agent ID|none")
        if agent_id is None:
            return ""
        agent = ctx.service.store.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)

    ctx.state.agent_id = agent.id if agent else None
    if ctx.state.thread_id is not None:
        ctx.service.store.update_thread(ctx.state.thread_id, agent_id=ctx.state.agent_id)
    label = agent.name if agent else "no agent"
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Agent → [bold]{label}[/bold]")
    return ""


def _cmd_reasoning(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        ctx.console.print(f"  Reasoning: [bold]{ctx.state.reasoning_level}[/bold] "
                          f"[{DIM}]({', '.join(REASONING_LEVELS)})[/{DIM}]")
        return ""
    level = args[0].lower()
    if level not in REASONING_LEVELS:
        ctx.console.print(f"  [{WARN}]Unknown level: {level}[/{WARN}]")
        return ""
    ctx.state.reasoning_level = level
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Reasoning → [bold]{level}[/bold] "
                      f"[{DIM}](max {ctx.config.max_tokens_for(level)} tokens)[/{DIM}]")
    return ""


def _cmd_models(ctx: CommandContext, args: list[str]) -> str:
    models = ctx.service.client.list_models()
    if not models:
        ctx.console.print(f"  [{DIM}]The endpoint did not list any models.[/{DIM}]")
        return ""
    for name in models:
        marker = f"[{ACCENT}]▸[/{ACCENT}]" if name == ctx.config.model else " "
        ctx.console.print(f"  {marker} {name}")
    return ""


def _cmd_config(ctx: CommandContext, args: list[str]) -> str:
    show_config_panel(ctx.console, ctx.config)
    return ""


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/help": _cmd_help,
    "/new": _cmd_new,
    "/threads": _cmd_threads,
    "/open": _cmd_open,
    "/history": _cmd_history,
    "/rename": _cmd_rename,
    "/delete": _cmd_delete,
    "/agents": _cmd_agents,
    "/agent": _cmd_agent,
    "/reasoning": _cmd_reasoning,
    "/models": _cmd_models,
    "/config": _cmd_config,
    "/quit": _cmd_quit,
}
