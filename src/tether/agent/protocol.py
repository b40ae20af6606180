"""Typed view of the agent CLI's ``stream-json`` wire protocol.

Each stdout line is one JSON object tagged by ``type`` (and, for ``system``,
``subtype``).  ``assistant`` and ``user`` objects wrap an API message whose
``message.content`` is a list of typed blocks: ``text``, ``thinking``,
``tool_use`` and ``tool_result``.

:func:`decode_event` maps a parsed object onto one of the
:data:`ProtocolEvent` variants.  Malformed fields are tolerated: anything
that does not have the expected shape is dropped rather than raising, since
the agent's output format drifts between releases.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from tether.session.models import TokenUsage


class _ProtocolBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ToolUseBlock(_ProtocolBase):
    """A ``tool_use`` content block."""

    id: str | None = None
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_ProtocolBase):
    """A ``tool_result`` content block."""

    tool_use_id: str | None = None
    content: Any = None
    is_error: bool = False


class SystemInit(_ProtocolBase):
    kind: Literal["system_init"] = "system_init"
    session_id: str | None = None
    model: str | None = None
    tools: list[Any] = Field(default_factory=list)
    cwd: str | None = None


class SystemUsage(_ProtocolBase):
    kind: Literal["system_usage"] = "system_usage"
    usage: TokenUsage


class UserEcho(_ProtocolBase):
    kind: Literal["user_echo"] = "user_echo"
    tool_results: list[ToolResultBlock] = Field(default_factory=list)
    tool_uses: list[ToolUseBlock] = Field(default_factory=list)
    has_other_content: bool = False


class AssistantChunk(_ProtocolBase):
    kind: Literal["assistant_chunk"] = "assistant_chunk"
    text: str = ""
    thinking: str = ""
    tool_uses: list[ToolUseBlock] = Field(default_factory=list)
    usage: TokenUsage | None = None
    model: str | None = None


class ToolUse(_ProtocolBase):
    kind: Literal["tool_use"] = "tool_use"
    name: str = ""
    input: Any = None


class ToolResult(_ProtocolBase):
    kind: Literal["tool_result"] = "tool_result"
    name: str = ""
    output: Any = None


class Result(_ProtocolBase):
    kind: Literal["result"] = "result"
    usage: TokenUsage | None = None
    result: str | None = None
    is_error: bool = False
    session_id: str | None = None


class AgentError(_ProtocolBase):
    kind: Literal["agent_error"] = "agent_error"
    message: str


class Unrecognized(_ProtocolBase):
    kind: Literal["unrecognized"] = "unrecognized"
    raw: dict[str, Any]


ProtocolEvent = (
    SystemInit
    | SystemUsage
    | UserEcho
    | AssistantChunk
    | ToolUse
    | ToolResult
    | Result
    | AgentError
    | Unrecognized
)


# ------------------------------------------------------------------ #
# Decoding
# ------------------------------------------------------------------ #


def decode_event(obj: dict[str, Any]) -> ProtocolEvent:
    """Map one parsed protocol object onto a :data:`ProtocolEvent`."""
    event_type = obj.get("type")

    if event_type == "system":
        subtype = obj.get("subtype")
        if subtype == "init":
            return _decode_init(obj)
        if subtype == "usage":
            usage = parse_usage(obj.get("usage")) or parse_usage(obj)
            return SystemUsage(usage=usage or TokenUsage())
        return Unrecognized(raw=obj)

    if event_type == "assistant":
        return _decode_assistant(obj)

    if event_type == "user":
        return _decode_user(obj)

    if event_type == "tool_use":
        return ToolUse(
            name=_str_or_empty(obj.get("tool_name")),
            input=obj.get("tool_input"),
        )

    if event_type == "tool_result":
        return ToolResult(
            name=_str_or_empty(obj.get("tool_name")),
            output=obj.get("tool_result"),
        )

    if event_type == "result":
        result = obj.get("result")
        session_id = obj.get("session_id")
        return Result(
            usage=parse_usage(obj.get("usage")),
            result=result if isinstance(result, str) else None,
            is_error=bool(obj.get("is_error", False)),
            session_id=session_id if isinstance(session_id, str) else None,
        )

    if event_type == "error":
        return AgentError(message=error_message(obj))

    return Unrecognized(raw=obj)


def parse_usage(raw: object) -> TokenUsage | None:
    """Extract token counts from a usage mapping, or ``None`` if absent."""
    if not isinstance(raw, dict):
        return None
    fields = TokenUsage.model_fields.keys()
    counts = {k: raw[k] for k in fields if isinstance(raw.get(k), int)}
    if not counts:
        return None
    return TokenUsage(**counts)


def error_message(obj: dict[str, Any]) -> str:
    """Best-effort message from an ``error`` object."""
    for key in ("error", "message"):
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested:
                return nested
    return "Unknown error"


def _decode_init(obj: dict[str, Any]) -> SystemInit:
    session_id = obj.get("session_id")
    model = obj.get("model")
    tools = obj.get("tools")
    cwd = obj.get("cwd")
    return SystemInit(
        session_id=session_id if isinstance(session_id, str) and session_id else None,
        model=model if isinstance(model, str) else None,
        tools=tools if isinstance(tools, list) else [],
        cwd=cwd if isinstance(cwd, str) else None,
    )


def _decode_assistant(obj: dict[str, Any]) -> AssistantChunk:
    message = obj.get("message")
    if not isinstance(message, dict):
        return AssistantChunk()

    text_parts: list[str] = []
    thinking_parts: list[str] = []
    tool_uses: list[ToolUseBlock] = []

    for block in _content_blocks(message):
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                text_parts.append(text)
        elif block_type == "thinking":
            # Current CLIs use "thinking"; older ones put it under "text".
            thinking = block.get("thinking", block.get("text"))
            if isinstance(thinking, str):
                thinking_parts.append(thinking)
        elif block_type == "tool_use":
            tool_uses.append(_tool_use_block(block))

    model = message.get("model")
    return AssistantChunk(
        text="".join(text_parts),
        thinking="".join(thinking_parts),
        tool_uses=tool_uses,
        usage=parse_usage(message.get("usage")),
        model=model if isinstance(model, str) else None,
    )


def _decode_user(obj: dict[str, Any]) -> UserEcho:
    message = obj.get("message")
    if not isinstance(message, dict):
        return UserEcho()

    tool_results: list[ToolResultBlock] = []
    tool_uses: list[ToolUseBlock] = []
    has_other = False

    for block in _content_blocks(message):
        block_type = block.get("type")
        if block_type == "tool_result":
            tool_use_id = block.get("tool_use_id")
            tool_results.append(
                ToolResultBlock(
                    tool_use_id=tool_use_id if isinstance(tool_use_id, str) else None,
                    content=block.get("content"),
                    is_error=bool(block.get("is_error", False)),
                )
            )
        elif block_type == "tool_use":
            tool_uses.append(_tool_use_block(block))
        else:
            has_other = True

    return UserEcho(
        tool_results=tool_results,
        tool_uses=tool_uses,
        has_other_content=has_other,
    )


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _tool_use_block(block: dict[str, Any]) -> ToolUseBlock:
    block_id = block.get("id")
    tool_input = block.get("input", {})
    return ToolUseBlock(
        id=block_id if isinstance(block_id, str) else None,
        name=_str_or_empty(block.get("name")),
        input=tool_input if isinstance(tool_input, dict) else {},
    )


def _str_or_empty(value: object) -> str:
    return value if isinstance(value, str) else ""
