"""Exception hierarchy for the tether runtime."""

from __future__ import annotations


class TetherError(Exception):
    """Base class for all tether errors."""


class NoActiveSessionError(TetherError):
    """Raised when a prompt is sent before any session was started."""


class SpawnError(TetherError):
    """The agent subprocess could not be started."""


class ShadowTimeoutError(TetherError):
    """A shadow task did not finish within its wall-clock budget."""


class ShadowEmptyResultError(TetherError):
    """A shadow task exited without producing any assistant text."""


class ShadowAgentError(TetherError):
    """A shadow task's subprocess reported an explicit error event."""
