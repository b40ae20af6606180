"""tether chat — an interactive conversation with the agent CLI."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from pathlib import Path

import click

from tether.agent.session import SessionManager
from tether.agent.shadow import ShadowTaskRunner
from tether.commands._common import (
    config_option,
    configure_logging,
    load_or_exit,
    verbose_option,
)
from tether.config.models import TetherConfig
from tether.errors import TetherError
from tether.session.history import load_transcript, transcript_text
from tether.session.models import (
    ChatMessageEvent,
    ChatMessageFinalizeEvent,
    ChatMessageUpdateEvent,
    ErrorEvent,
    ProcessStoppedEvent,
    SessionEvent,
    SessionIdChangedEvent,
    TodoUpdateEvent,
)

#: Characters of a tool result shown inline.
_RESULT_PREVIEW_LEN = 200


@click.command()
@click.option(
    "-d",
    "--directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory for the agent (default: current directory).",
)
@click.option("--session-id", type=str, default=None, help="Session id to use.")
@click.option(
    "--new",
    "is_new_session",
    is_flag=True,
    help="Treat --session-id as a brand-new session instead of resuming it.",
)
@click.option(
    "-p",
    "--prompt",
    "initial_prompt",
    type=str,
    default=None,
    help="Initial prompt to send once the session has started.",
)
@config_option
@verbose_option
def chat(
    directory: Path | None,
    session_id: str | None,
    is_new_session: bool,
    initial_prompt: str | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Start or resume a session and enter the interactive REPL."""
    config = load_or_exit(config_file)
    configure_logging(config, verbose)

    asyncio.run(
        _run_chat(config, directory, session_id, is_new_session, initial_prompt)
    )


# ------------------------------------------------------------------ #
# Session runner
# ------------------------------------------------------------------ #


async def _run_chat(
    config: TetherConfig,
    directory: Path | None,
    session_id: str | None,
    is_new_session: bool,
    initial_prompt: str | None,
) -> None:
    manager = SessionManager.from_config(config, directory)
    printer = EventPrinter()
    manager.channel.subscribe(printer)

    active_id = await manager.start(
        manager.working_directory, session_id, is_new_session
    )
    click.echo(f"\n  Tether -- session {active_id}")
    click.echo(f"  Directory: {manager.working_directory}")
    click.echo(f"  Log:       {manager.debug_log_path}")
    click.echo("  Commands:  /stop /status /summarize /done")
    click.echo()

    try:
        if initial_prompt:
            click.echo(f"> {initial_prompt}")
            await _run_turn(manager, initial_prompt)
        await _repl_loop(manager, config)
    finally:
        await manager.close()


async def _repl_loop(manager: SessionManager, config: TetherConfig) -> None:
    """Read user input until ``/done`` or EOF."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            if await _handle_command(line, manager, config):
                break
            continue

        await _run_turn(manager, line)


async def _run_turn(manager: SessionManager, prompt: str) -> None:
    """Send *prompt* and wait for the turn, with Ctrl+C interrupting it."""
    loop = asyncio.get_running_loop()

    def _interrupt() -> None:
        loop.create_task(manager.interrupt_current())

    installed = False
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, _interrupt)
        installed = True

    try:
        if not await manager.send_prompt(prompt):
            click.echo("Still processing the previous prompt.")
            return
        await manager.wait_idle()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def _handle_command(
    line: str,
    manager: SessionManager,
    config: TetherConfig,
) -> bool:
    """Process a slash command. Returns ``True`` if the REPL should exit."""
    cmd = line.split()[0].lower()

    if cmd == "/done":
        return True

    if cmd == "/stop":
        await manager.interrupt_current()
        return False

    if cmd == "/status":
        status = manager.status()
        click.echo(f"  Session:    {status.session_id}")
        click.echo(f"  Turns:      {status.turn_count} ({status.continuity.value})")
        click.echo(f"  Processing: {'yes' if status.processing else 'no'}")
        click.echo(f"  Directory:  {status.working_directory}")
        usage = manager.token_usage
        if usage is not None:
            click.echo(
                f"  Tokens:     {usage.input_tokens} in / "
                f"{usage.output_tokens} out ({usage.total} total)"
            )
        return False

    if cmd == "/summarize":
        await _summarize_session(manager, config)
        return False

    click.echo(f"Unknown command: {cmd}")
    return False


async def _summarize_session(manager: SessionManager, config: TetherConfig) -> None:
    log_path = manager.debug_log_path
    if log_path is None or not log_path.is_file():
        click.echo("Nothing to summarize yet.")
        return

    entries = load_transcript(log_path).entries
    if not entries:
        click.echo("Nothing to summarize yet.")
        return

    runner = ShadowTaskRunner.from_config(config, manager.working_directory)
    click.echo(click.style("  Summarizing...", dim=True))
    try:
        summary = await runner.summarize(transcript_text(entries))
    except TetherError as exc:
        click.echo(click.style(f"  Summary failed: {exc}", fg="red"), err=True)
        return
    click.echo(f"\n{summary}\n")


# ------------------------------------------------------------------ #
# Output
# ------------------------------------------------------------------ #


class EventPrinter:
    """Renders session events to the terminal as they are emitted."""

    def __init__(self) -> None:
        self._shown: dict[str, str] = {}

    def __call__(self, event: SessionEvent) -> None:
        if isinstance(event, ChatMessageEvent):
            self._on_chat(event)
        elif isinstance(event, ChatMessageUpdateEvent):
            self._on_update(event)
        elif isinstance(event, ChatMessageFinalizeEvent):
            if self._shown.pop(event.message_id, None) is not None:
                click.echo()
        elif isinstance(event, ErrorEvent):
            click.echo(click.style(f"Error: {event.error}", fg="red"), err=True)
        elif isinstance(event, SessionIdChangedEvent):
            click.echo(
                click.style(
                    f"  Session id changed: {event.old_id} -> {event.new_id}",
                    dim=True,
                )
            )
        elif isinstance(event, TodoUpdateEvent):
            self._on_todos(event)
        elif isinstance(event, ProcessStoppedEvent):
            click.echo(click.style("  Stopped.", fg="yellow"))

    def _on_chat(self, event: ChatMessageEvent) -> None:
        if event.kind == "assistant":
            self._shown[event.message_id] = event.content
            click.echo(event.content, nl=False)
        elif event.kind == "thinking":
            click.echo(click.style(event.content, dim=True))
        elif event.kind == "tool_use":
            click.echo(click.style(f"  {event.content}", fg="cyan"))
        else:
            preview = event.content
            if len(preview) > _RESULT_PREVIEW_LEN:
                preview = preview[:_RESULT_PREVIEW_LEN] + "..."
            click.echo(click.style(f"  {preview}", dim=True))

    def _on_update(self, event: ChatMessageUpdateEvent) -> None:
        shown = self._shown.get(event.message_id, "")
        if event.content.startswith(shown):
            click.echo(event.content[len(shown) :], nl=False)
        else:
            click.echo()
            click.echo(event.content, nl=False)
        self._shown[event.message_id] = event.content

    def _on_todos(self, event: TodoUpdateEvent) -> None:
        click.echo(click.style("  Todos:", bold=True))
        for todo in event.todos:
            if isinstance(todo, dict):
                mark = "x" if todo.get("status") == "completed" else " "
                click.echo(f"   [{mark}] {todo.get('content', '')}")
            else:
                click.echo(f"   [ ] {todo}")
