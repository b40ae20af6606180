"""Shared helpers for spawning and reporting on agent subprocesses."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

from tether.errors import SpawnError


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


async def spawn_agent(
    args: Sequence[str],
    cwd: Path | None = None,
) -> asyncio.subprocess.Process:
    """Spawn the agent CLI with piped stdout/stderr and no stdin.

    Raises:
        SpawnError: If the executable is missing or cannot be started.
    """
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        msg = (
            f"Agent CLI '{args[0]}' not found. "
            "Make sure it is installed and on your PATH "
            "(npm install -g @anthropic-ai/claude-code)."
        )
        raise SpawnError(msg) from exc
    except OSError as exc:
        msg = f"Failed to spawn agent CLI '{args[0]}': {exc}"
        raise SpawnError(msg) from exc
