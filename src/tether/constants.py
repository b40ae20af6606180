"""Shared constants for the tether runtime."""

from __future__ import annotations

#: Executable name of the external agent CLI.
DEFAULT_COMMAND = "claude"

#: Directory (relative to the working directory) holding per-session logs.
DEBUG_DIR_NAME = ".claude-debug"

#: Tool whose input carries the agent's structured todo list.
TODO_TOOL_NAME = "TodoWrite"

#: Seconds to wait after terminating a subprocess on stop/interrupt.
STOP_GRACE = 0.1

#: Wall-clock budget for shadow tasks (seconds).
SHADOW_TIMEOUT = 60.0

#: Maximum bytes buffered for a single protocol line (1 MB).
MAX_LINE_BYTES = 1_048_576

#: Bytes requested per stdout read.
READ_CHUNK_SIZE = 65_536

#: Seconds to wait for a killed subprocess to be reaped.
KILL_WAIT = 5.0
