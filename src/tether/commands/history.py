"""tether history — list logged sessions or print one transcript."""

from __future__ import annotations

from pathlib import Path

import click

from tether.commands._common import (
    config_option,
    configure_logging,
    load_or_exit,
    verbose_option,
)
from tether.session.history import (
    SessionSummary,
    Transcript,
    find_session_file,
    list_sessions,
    load_transcript,
)


@click.command()
@click.argument("session_id", required=False)
@click.option(
    "-d",
    "--directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory whose session logs to read.",
)
@config_option
@verbose_option
def history(
    session_id: str | None,
    directory: Path | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """List sessions, or print the transcript of SESSION_ID."""
    config = load_or_exit(config_file)
    configure_logging(config, verbose)

    working_directory = config.resolve_working_directory(directory)
    debug_dir = config.debug_dir_for(working_directory)

    if session_id is None:
        _print_sessions(list_sessions(debug_dir), debug_dir)
        return

    path = find_session_file(debug_dir, session_id)
    if path is None:
        msg = f"Session '{session_id}' not found in {debug_dir}"
        raise click.ClickException(msg)
    _print_transcript(load_transcript(path))


def _print_sessions(sessions: list[SessionSummary], debug_dir: Path) -> None:
    if not sessions:
        click.echo(f"No sessions found in {debug_dir}")
        return

    for s in sessions:
        when = s.last_ts.strftime("%Y-%m-%d %H:%M") if s.last_ts else "unknown"
        click.echo(f"{s.session_id}  {when}  {s.message_count} messages")
        if s.rekeyed:
            click.echo(click.style(f"  continued as {s.canonical_id}", dim=True))
        if s.last_user_prompt:
            click.echo(f"  > {s.last_user_prompt}")


def _print_transcript(transcript: Transcript) -> None:
    click.echo(f"Session {transcript.session_id}")
    if transcript.canonical_id and transcript.canonical_id != transcript.session_id:
        click.echo(f"Agent session id: {transcript.canonical_id}")
    click.echo()

    for entry in transcript.entries:
        if entry.role == "user":
            click.echo(click.style(f"> {entry.content}", bold=True))
        else:
            click.echo(entry.content)
        click.echo()

    for warning in transcript.warnings:
        click.echo(click.style(f"Warning: {warning}", fg="yellow"), err=True)
