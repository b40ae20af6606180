"""Pydantic v2 models for tether.yaml configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tether.constants import (
    DEBUG_DIR_NAME,
    DEFAULT_COMMAND,
    MAX_LINE_BYTES,
    READ_CHUNK_SIZE,
    SHADOW_TIMEOUT,
    STOP_GRACE,
    TODO_TOOL_NAME,
)

#: Flags tether manages itself; passing them via extra_args would break
#: the continuity strategy.
_RESERVED_FLAGS = {"--session-id", "--continue", "--resume", "-c", "-r"}


class AgentCLIConfig(BaseModel):
    """How the external agent CLI is invoked."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(
        default=DEFAULT_COMMAND,
        description="Executable name or path of the agent CLI",
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Additional flags appended after the built-in ones",
    )
    max_line_bytes: int = Field(
        default=MAX_LINE_BYTES,
        gt=0,
        description="Longest protocol line buffered before it is discarded",
    )
    read_chunk_size: int = Field(
        default=READ_CHUNK_SIZE,
        gt=0,
        description="Bytes requested per stdout read",
    )

    @field_validator("extra_args")
    @classmethod
    def _no_reserved_flags(cls, value: list[str]) -> list[str]:
        clash = sorted(_RESERVED_FLAGS.intersection(value))
        if clash:
            joined = ", ".join(clash)
            msg = f"extra_args may not contain session flags: {joined}"
            raise ValueError(msg)
        return value


class SessionConfig(BaseModel):
    """Session manager behaviour."""

    model_config = ConfigDict(extra="forbid")

    working_directory: Path | None = Field(
        default=None,
        description="Default working directory (defaults to the current one)",
    )
    debug_dir: str = Field(
        default=DEBUG_DIR_NAME,
        description="Log directory, relative to the working directory",
    )
    stop_grace: float = Field(
        default=STOP_GRACE,
        ge=0,
        description="Seconds to wait after terminating a subprocess",
    )
    todo_tool: str = Field(
        default=TODO_TOOL_NAME,
        description="Tool whose input carries the agent's todo list",
    )
    dedup: Literal["exact", "digest"] = Field(
        default="exact",
        description="Duplicate suppression strategy for streamed payloads",
    )


class ShadowConfig(BaseModel):
    """One-shot auxiliary tasks such as summarization."""

    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(
        default=SHADOW_TIMEOUT,
        gt=0,
        description="Wall-clock budget in seconds",
    )


class TetherConfig(BaseModel):
    """Top-level tether.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    agent: AgentCLIConfig = Field(default_factory=AgentCLIConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    shadow: ShadowConfig = Field(default_factory=ShadowConfig)
    log_level: str = Field(
        default="WARNING",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown log level '{value}'"
            raise ValueError(msg)
        return level

    def resolve_working_directory(self, override: Path | None = None) -> Path:
        """Return the working directory to run the agent in."""
        if override is not None:
            return override
        if self.session.working_directory is not None:
            return self.session.working_directory
        return Path.cwd()

    def debug_dir_for(self, working_directory: Path) -> Path:
        """Return the session log directory for *working_directory*."""
        return working_directory / self.session.debug_dir
