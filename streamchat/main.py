"""
streamchat v1.0.0: streaming chat client with tools, agents and threads.

Command: streamchat run
"""

import os
import sys

import click
from rich.console import Console

from . import __version__
from .chat import ChatService
from .commands import SLASH_COMMANDS, ReplState, handle_command, show_config_panel
from .config import CONFIG_DIR, CONFIG_FIELDS, HISTORY_FILE, REASONING_LEVELS, Config
from .errors import ChatError
from .logger import setup_logger
from .rendering import ACCENT, DIM, SUCCESS, render_agents, render_error, render_history, render_threads, render_turn

console = Console()
BANNER = (
    f"[bold {ACCENT}]streamchat[/bold {ACCENT}] "
    f"[dim]v{__version__} · streaming chat[/dim]"
)


def _load_config(project_dir: str, verbose: bool = False) -> Config:
    config = Config.load(project_dir)
    if verbose:
        config.verbose = True
    setup_logger(verbose=config.verbose, log_file=config.log_file)
    return config


def _open_service(config: Config) -> ChatService:
    return ChatService.from_config(config).open()


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """streamchat: streaming chat client for OpenAI-compatible endpoints."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--thread", "-t", "thread_id", type=int, default=None, help="Resume a thread")
@click.option("--agent", "-a", "agent_id", type=int, default=None, help="Agent for new threads")
@click.option("--reasoning", "-r", type=click.Choice(REASONING_LEVELS), default=None)
@click.option("--project-dir", "-d", default=".", help="Project directory")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(thread_id, agent_id, reasoning, project_dir, verbose):
    """Start an interactive session."""
    console.print(BANNER)
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, verbose)
    state = ReplState(
        thread_id=thread_id,
        agent_id=agent_id,
        reasoning_level=reasoning or config.reasoning_level,
    )

    from prompt_toolkit import PromptSession
    from prompt_toolkit.completion import WordCompleter
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    session = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        multiline=False,
        completer=WordCompleter(SLASH_COMMANDS, sentence=True),
        complete_while_typing=True,
    )

    repl_kb = KeyBindings()

    @repl_kb.add("escape", "enter")
    def _newline(event):
        event.current_buffer.insert_text("\n")

    with _open_service(config) as service:
        console.print(f"  [{DIM}]{config.model} · {config.api_base} · /help for commands[/{DIM}]")
        if state.thread_id is not None:
            handle_command(f"/open {state.thread_id}", console=console,
                           service=service, config=config, state=state)

        pending_ctrl_d_exit = False
        while True:
            try:
                user_input = session.prompt("› ", key_bindings=repl_kb).strip()
                pending_ctrl_d_exit = False
            except EOFError:
                if pending_ctrl_d_exit:
                    console.print("\n[dim]Goodbye![/dim]")
                    break
                pending_ctrl_d_exit = True
                console.print("\n[dim]Press Ctrl-D again to exit.[/dim]")
                continue
            except KeyboardInterrupt:
                console.print("\n[dim]Goodbye![/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                result = handle_command(user_input, console=console, service=service,
                                        config=config, state=state)
                if result == "quit":
                    break
                continue

            try:
                events = service.submit_user_message(
                    state.thread_id, user_input,
                    agent_id=state.agent_id, reasoning_level=state.reasoning_level,
                )
            except ChatError as error:
                render_error(console, str(error))
                continue
            state.thread_id = events.thread_id
            try:
                render_turn(console, events)
            except KeyboardInterrupt:
                console.print(f"\n[{DIM}]  Interrupted.[/{DIM}]")
            except Exception as error:
                render_error(console, f"Error: {error}")
                if config.verbose:
                    import traceback

                    console.print(f"[dim]{traceback.format_exc()}[/dim]")


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--thread", "-t", "thread_id", type=int, default=None, help="Continue a thread")
@click.option("--agent", "-a", "agent_id", type=int, default=None, help="Agent for the thread")
@click.option("--reasoning", "-r", type=click.Choice(REASONING_LEVELS), default=None)
@click.option("--project-dir", "-d", default=".")
def ask(message, thread_id, agent_id, reasoning, project_dir):
    """Run a single query."""
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            events = service.submit_user_message(
                thread_id, " ".join(message), agent_id=agent_id, reasoning_level=reasoning)
        except (ChatError, ValueError) as error:
            render_error(console, str(error))
            sys.exit(1)
        result = render_turn(console, events)
    if result is None or not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--project-dir", "-d", default=".")
def threads(project_dir):
    """List threads."""
    config = _load_config(project_dir)
    with _open_service(config) as service:
        render_threads(console, service.store.list_threads())


@cli.command()
@click.argument("thread_id", type=int)
@click.option("--reasoning", "show_reasoning", is_flag=True, help="Show reasoning")
@click.option("--limit", "-n", type=int, default=None, help="Only the newest N messages")
@click.option("--project-dir", "-d", default=".")
def history(thread_id, show_reasoning, limit, project_dir):
    """Show a thread's messages."""
    config = _load_config(project_dir)
    with _open_service(config) as service:
        thread = service.store.get_thread(thread_id)
        if thread is None:
            render_error(console, f"Thread {thread_id} not found")
            sys.exit(1)
        console.print(f"[bold]{thread.title or '(untitled)'}[/bold]")
        if limit:
            messages = service.store.recent_messages(thread_id, limit)
        else:
            messages = service.store.list_messages(thread_id)
        render_history(console, messages, show_reasoning=show_reasoning)


@cli.command("delete-thread")
@click.argument("thread_id", type=int)
@click.option("--project-dir", "-d", default=".")
def delete_thread(thread_id, project_dir):
    """Delete a thread and its messages."""
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            service.store.delete_thread(thread_id)
        except ChatError as error:
            render_error(console, str(error))
            sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Deleted thread {thread_id}")


@cli.command("rename-thread")
@click.argument("thread_id", type=int)
@click.argument("title", nargs=-1, required=True)
@click.option("--project-dir", "-d", default=".")
def rename_thread(thread_id, title, project_dir):
    """Change a thread's title."""
    title = " ".join(title).strip()
    if not title:
        render_error(console, "Title must not be empty")
        sys.exit(1)
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            thread = service.store.update_thread(thread_id, title=title)
        except ChatError as error:
            render_error(console, str(error))
            sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Thread {thread.id} · [bold]{thread.title}[/bold]")


@cli.group()
def agents():
    """Manage agents."""


@agents.command("list")
@click.option("--project-dir", "-d", default=".")
def agents_list(project_dir):
    config = _load_config(project_dir)
    with _open_service(config) as service:
        render_agents(console, service.store.list_agents())


@agents.command("add")
@click.argument("name")
@click.option("--prompt", "-p", "system_prompt", required=True, help="System instructions")
@click.option("--description", default="")
@click.option("--project-dir", "-d", default=".")
def agents_add(name, system_prompt, description, project_dir):
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            agent = service.store.create_agent(name, system_prompt, description)
        except ValueError as error:
            render_error(console, str(error))
            sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Agent {agent.id} · [bold]{agent.name}[/bold]")


@agents.command("update")
@click.argument("agent_id", type=int)
@click.option("--name", default=None)
@click.option("--prompt", "-p", "system_prompt", default=None)
@click.option("--description", default=None)
@click.option("--project-dir", "-d", default=".")
def agents_update(agent_id, name, system_prompt, description, project_dir):
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            agent = service.store.update_agent(agent_id, name=name, description=description,
                                               system_prompt=system_prompt)
        except (ChatError, ValueError) as error:
            render_error(console, str(error))
            sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Updated agent {agent.id}")


@agents.command("delete")
@click.argument("agent_id", type=int)
@click.option("--project-dir", "-d", default=".")
def agents_delete(agent_id, project_dir):
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            service.store.delete_agent(agent_id)
        except ChatError as error:
            render_error(console, str(error))
            sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Deleted agent {agent_id}")


@cli.command()
@click.option("--project-dir", "-d", default=".")
def models(project_dir):
    """List models offered by the endpoint."""
    config = _load_config(project_dir)
    with _open_service(config) as service:
        try:
            names = service.client.list_models()
        except ChatError as error:
            render_error(console, str(error))
            sys.exit(1)
    for name in names:
        console.print(f"  {name}")


@cli.command("config")
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--project-dir", "-d", default=".")
def config_cmd(key, value, project_dir):
    """Show configuration, or set KEY to VALUE."""
    cfg = Config.load(project_dir)
    if key is None:
        show_config_panel(console, cfg)
        return
    if key not in CONFIG_FIELDS or value is None:
        console.print(f"  [{DIM}]Settable keys: {', '.join(CONFIG_FIELDS)}[/{DIM}]")
        sys.exit(1)
    ok, message = cfg.set_config_value(key, value)
    if not ok:
        render_error(console, message)
        sys.exit(1)
    console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] {message}")


if __name__ == "__main__":
    cli()
