"""Terminal rendering: live turn display, thread history and listings."""

import datetime as dt
from typing import Iterable, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .controller import RenderState, TurnResult, TurnState
from .deltas import REASONING_DURATION_KEY
from .grouping import DisplayMessage, group_messages
from .models import Agent, Thread

__all__ = [
    "render_turn", "render_history", "render_threads", "render_agents",
    "render_error", "format_duration",
]

ACCENT = "#7FA6D9"
DIM = "#6E7681"
WARN = "#E3B341"
ERROR = "#F85149"
SUCCESS = "#57DB9C"

REASONING_PREVIEW_LINES = 6


def format_duration(ms: Optional[int]) -> str:
    if ms is None:
        return ""
    if ms < 1000:
        return f"{ms} ms"
    return f"{ms / 1000:.1f}s"


def _local_time(value: Optional[dt.datetime]) -> str:
    """Stored UTC timestamp shown in the local timezone."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def render_error(console: Console, message: str):
    console.print(f"  [{ERROR}]✕ {message}[/{ERROR}]")


def _reasoning_tail(reasoning: str) -> str:
    lines = [line for line in reasoning.strip().splitlines() if line.strip()]
    return "\n".join(lines[-REASONING_PREVIEW_LINES:])


def _state_renderable(state: RenderState):
    parts = []
    for activity in state.tool_activity:
        mark = f"[{SUCCESS}]✓[/{SUCCESS}]" if activity.done else f"[{DIM}]…[/{DIM}]"
        parts.append(Text.from_markup(f"  {mark} [{ACCENT}]{activity.name}[/{ACCENT}]"))

    duration = state.metrics.get(REASONING_DURATION_KEY)
    if state.reasoning:
        label = "thinking" if not state.content else f"thought for {format_duration(duration)}"
        parts.append(Text(f"  💭 {label}", style=DIM))
        if not state.content:
            parts.append(Text(_reasoning_tail(state.reasoning), style=f"italic {DIM}"))

    if state.content:
        parts.append(Markdown(state.content))
    elif state.placeholder or state.state == TurnState.REQUESTING:
        parts.append(Text("  …", style=DIM))
    return Group(*parts)


def render_turn(console: Console, events: Iterable) -> Optional[TurnResult]:
    """Consume a turn's events, showing progress live. Returns the TurnResult."""
    result: Optional[TurnResult] = None
    try:
        with Live(Text("  …", style=DIM), console=console,
                  refresh_per_second=12, transient=False) as live:
            for event in events:
                if isinstance(event, TurnResult):
                    result = event
                    continue
                live.update(_state_renderable(event))
    finally:
        # an interrupted turn must release its stream and thread slot
        close = getattr(events, "close", None)
        if close is not None:
            close()

    if result is None:
        return None
    if not result.ok and result.error:
        render_error(console, result.error)
    elif result.message is not None:
        duration = (result.message.metrics or {}).get(REASONING_DURATION_KEY)
        tail = f" · {format_duration(duration)}" if duration is not None else ""
        console.print(f"  [{DIM}]{result.requests} request(s){tail}[/{DIM}]")
    return result


def _render_unit(console: Console, unit: DisplayMessage, show_reasoning: bool):
    if unit.role == "user":
        console.print(Panel(Text(unit.content), title="you", title_align="left",
                            border_style=ACCENT))
        return
    if show_reasoning and unit.reasoning_parts:
        console.print(Panel(Text(unit.reasoning_text, style=f"italic {DIM}"),
                            title=f"reasoning · {format_duration(unit.duration_ms)}",
                            title_align="left", border_style=DIM))
    console.print(Markdown(unit.content or "_(no answer)_"))
    console.print()


def render_history(console: Console, messages, show_reasoning: bool = False):
    units = group_messages(messages)
    if not units:
        console.print(f"  [{DIM}]No messages yet.[/{DIM}]")
        return
    for unit in units:
        _render_unit(console, unit, show_reasoning)


def render_threads(console: Console, threads: List[Thread], current: Optional[int] = None):
    if not threads:
        console.print(f"  [{DIM}]No threads.[/{DIM}]")
        return
    table = Table(show_header=True, header_style=f"bold {ACCENT}", box=None)
    table.add_column("id", justify="right")
    table.add_column("title")
    table.add_column("agent", justify="right")
    table.add_column("updated")
    for thread in threads:
        marker = "▸ " if thread.id == current else ""
        table.add_row(
            f"{marker}{thread.id}", thread.title or "(untitled)",
            str(thread.agent_id) if thread.agent_id is not None else "-",
            _local_time(thread.updated_at),
        )
    console.print(table)


def render_agents(console: Console, agents: List[Agent]):
    if not agents:
        console.print(f"  [{DIM}]No agents.[/{DIM}]")
        return
    table = Table(show_header=True, header_style=f"bold {ACCENT}", box=None)
    table.add_column("id", justify="right")
    table.add_column("name")
    table.add_column("description")
    for agent in agents:
        table.add_row(str(agent.id), agent.name, agent.description or "")
    console.print(table)
