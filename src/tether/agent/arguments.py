"""Argument strategy — picks CLI flags for each turn of a session.

The agent CLI keeps conversation history on its side, but it offers no
reliable way to resume a *specific* session id while running
non-interactively:

* ``--session-id <id>`` can only create a session (it fails if the id exists).
* ``--resume <id>`` does not work together with ``--print``.
* ``--continue`` resumes whatever session the CLI considers most recent.

So a fresh subprocess is spawned per turn and continuity is chosen from
``(turn, mode)``:

=====  ==========  ==============================
turn   mode        flags
=====  ==========  ==============================
1      NEW         ``--session-id <id>``
1      RESUMING    ``--continue``
>1     any         ``--continue``
=====  ==========  ==============================

For a resuming session the caller's id is provisional until the agent
confirms (or replaces) it in its ``system/init`` event.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence

from tether.constants import DEFAULT_COMMAND

#: Flags present on every invocation, primary or shadow.
BASE_FLAGS: tuple[str, ...] = (
    "--print",
    "--verbose",
    "--output-format",
    "stream-json",
    "--dangerously-skip-permissions",
)

SESSION_ID_FLAG = "--session-id"
CONTINUE_FLAG = "--continue"


class ContinuityMode(enum.Enum):
    """Whether a session was created fresh or attached to existing history."""

    NEW = "new"
    RESUMING = "resuming"


def continuity_flags(
    turn: int,
    mode: ContinuityMode,
    session_id: str | None,
) -> list[str]:
    """Return the continuity flags for *turn* (1-indexed) of a session."""
    if turn < 1:
        msg = f"Turn numbers start at 1, got {turn}"
        raise ValueError(msg)

    if turn == 1 and mode is ContinuityMode.NEW:
        if session_id:
            return [SESSION_ID_FLAG, session_id]
        return []
    return [CONTINUE_FLAG]


def build_args(
    prompt: str,
    turn: int,
    mode: ContinuityMode,
    session_id: str | None,
    *,
    command: str = DEFAULT_COMMAND,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Build the full argument vector for one primary turn."""
    return [
        command,
        *BASE_FLAGS,
        *extra_args,
        *continuity_flags(turn, mode, session_id),
        prompt,
    ]


def shadow_args(
    prompt: str,
    *,
    command: str = DEFAULT_COMMAND,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Build the argument vector for a one-shot shadow invocation."""
    return [command, *BASE_FLAGS, *extra_args, prompt]
