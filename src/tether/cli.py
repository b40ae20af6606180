"""Root CLI group and version flag."""

import signal

import click

# Ensure SIGPIPE doesn't silently kill the process (e.g. when stdout
# pipe closes while click.echo is writing).
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from tether import __version__
from tether.commands.chat import chat
from tether.commands.history import history
from tether.commands.summarize import summarize


@click.group()
@click.version_option(version=__version__, prog_name="tether")
def cli() -> None:
    """Tether — persistent conversations with the Claude Code CLI."""


cli.add_command(chat)
cli.add_command(history)
cli.add_command(summarize)
