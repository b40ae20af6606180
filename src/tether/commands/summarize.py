"""tether summarize — one-shot summary of a text file or logged session."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from tether.agent.shadow import ShadowTaskRunner
from tether.commands._common import (
    config_option,
    configure_logging,
    load_or_exit,
    verbose_option,
)
from tether.errors import TetherError
from tether.session.history import (
    find_session_file,
    load_transcript,
    transcript_text,
)


@click.command()
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=False,
)
@click.option("--session", "session_id", default=None, help="Summarize a logged session.")
@click.option(
    "-d",
    "--directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory for the agent and its session logs.",
)
@config_option
@verbose_option
def summarize(
    file: Path | None,
    session_id: str | None,
    directory: Path | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Summarize FILE (or a logged session) without touching any session."""
    if (file is None) == (session_id is None):
        msg = "Give exactly one of FILE or --session"
        raise click.UsageError(msg)

    config = load_or_exit(config_file)
    configure_logging(config, verbose)
    working_directory = config.resolve_working_directory(directory)

    if file is not None:
        text = file.read_text(encoding="utf-8")
    else:
        assert session_id is not None
        debug_dir = config.debug_dir_for(working_directory)
        path = find_session_file(debug_dir, session_id)
        if path is None:
            msg = f"Session '{session_id}' not found in {debug_dir}"
            raise click.ClickException(msg)
        text = transcript_text(load_transcript(path).entries)

    if not text.strip():
        raise click.ClickException("Nothing to summarize")

    runner = ShadowTaskRunner.from_config(config, working_directory)
    try:
        summary = asyncio.run(runner.summarize(text))
    except TetherError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(summary)
