"""Pydantic v2 models for the events a session emits to its consumers."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class TokenUsage(BaseModel):
    """Token counts reported by the agent.

    The agent reports cumulative context usage, so a newer snapshot replaces
    an older one rather than being added to it.
    """

    model_config = ConfigDict(extra="forbid")

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )


class _EventBase(BaseModel):
    """Common envelope fields shared by every session event."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    ts: str = Field(default="", description="ISO 8601 timestamp with milliseconds")
    seq: int = Field(default=0, ge=0, description="Monotonic sequence number")


class SessionStartedEvent(_EventBase):
    """Emitted by every ``start()`` call."""

    type: Literal["session_started"] = "session_started"
    session_id: str = Field(description="Id the session is currently known by")


class ReadyEvent(_EventBase):
    """The session can accept a new prompt."""

    type: Literal["ready"] = "ready"


class SessionStoppedEvent(_EventBase):
    """The session was torn down by ``stop()``."""

    type: Literal["session_stopped"] = "session_stopped"


class ProcessStoppedEvent(_EventBase):
    """The in-flight turn was cancelled; the session itself survives."""

    type: Literal["process_stopped"] = "process_stopped"
    reason: Literal["user_interrupted"] = "user_interrupted"


class SessionIdChangedEvent(_EventBase):
    """The agent reported a different canonical session id.

    Consumers keying anything by session id must re-key on this event.
    """

    type: Literal["session_id_changed"] = "session_id_changed"
    old_id: str | None = Field(description="Id the session was known by")
    new_id: str = Field(description="Id reported by the agent")


class SystemInfoEvent(_EventBase):
    """Model/tool information from the agent's ``system/init`` line."""

    type: Literal["system_info"] = "system_info"
    session_id: str | None = None
    model: str | None = None
    tools: list[Any] = Field(default_factory=list)
    cwd: str | None = None


ChatKind = Literal["assistant", "thinking", "tool_use", "tool_result"]


class ChatMessageEvent(_EventBase):
    """A discrete chat entry for display."""

    type: Literal["chat_message"] = "chat_message"
    message_id: str = Field(description="Unique id of this chat entry")
    kind: ChatKind
    content: str = Field(description="Display text")
    streaming: bool = Field(
        default=False,
        description="True when later updates will replace content",
    )
    model: str | None = None
    usage: TokenUsage | None = None
    tool_name: str | None = None
    tool_input: Any = None
    tool_use_id: str | None = None
    tool_result: Any = None


class ChatMessageUpdateEvent(_EventBase):
    """Replaces the content of a streaming assistant message."""

    type: Literal["chat_message_update"] = "chat_message_update"
    message_id: str
    content: str = Field(description="Full accumulated reply, not a delta")
    model: str | None = None
    usage: TokenUsage | None = None


class ChatMessageFinalizeEvent(_EventBase):
    """No more updates will follow for a streaming message."""

    type: Literal["chat_message_finalize"] = "chat_message_finalize"
    message_id: str


class TokenUsageEvent(_EventBase):
    """Latest token usage snapshot for the session."""

    type: Literal["token_usage"] = "token_usage"
    usage: TokenUsage


class ToolUseEvent(_EventBase):
    """Lower-level notification that the agent invoked a tool."""

    type: Literal["tool_use"] = "tool_use"
    tool: str
    input: Any = None


class ToolResultEvent(_EventBase):
    """Lower-level notification that a tool returned."""

    type: Literal["tool_result"] = "tool_result"
    tool: str
    output: Any = None


class TodoUpdateEvent(_EventBase):
    """The agent rewrote its todo list."""

    type: Literal["todo_update"] = "todo_update"
    todos: list[Any]


class ErrorEvent(_EventBase):
    """An error that ended (or failed to start) a turn."""

    type: Literal["error"] = "error"
    error: str = Field(description="Error description")
    context: str | None = Field(
        default=None,
        description="Error context: agent, spawn, subprocess, output, ...",
    )


class JsonDebugEvent(_EventBase):
    """Raw stdout chunk or parsed protocol object, for debugging views."""

    type: Literal["json_debug"] = "json_debug"
    raw: str | None = None
    parsed: dict[str, Any] | None = None


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


SessionEvent = Annotated[
    Annotated[SessionStartedEvent, Tag("session_started")]
    | Annotated[ReadyEvent, Tag("ready")]
    | Annotated[SessionStoppedEvent, Tag("session_stopped")]
    | Annotated[ProcessStoppedEvent, Tag("process_stopped")]
    | Annotated[SessionIdChangedEvent, Tag("session_id_changed")]
    | Annotated[SystemInfoEvent, Tag("system_info")]
    | Annotated[ChatMessageEvent, Tag("chat_message")]
    | Annotated[ChatMessageUpdateEvent, Tag("chat_message_update")]
    | Annotated[ChatMessageFinalizeEvent, Tag("chat_message_finalize")]
    | Annotated[TokenUsageEvent, Tag("token_usage")]
    | Annotated[ToolUseEvent, Tag("tool_use")]
    | Annotated[ToolResultEvent, Tag("tool_result")]
    | Annotated[TodoUpdateEvent, Tag("todo_update")]
    | Annotated[ErrorEvent, Tag("error")]
    | Annotated[JsonDebugEvent, Tag("json_debug")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all session event types."""
