"""Protocol dispatcher — turns decoded protocol events into session events."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from tether.agent.dedup import DedupStrategy, DuplicateFilter, make_filter
from tether.agent.protocol import (
    AgentError,
    AssistantChunk,
    ProtocolEvent,
    Result,
    SystemInit,
    SystemUsage,
    ToolResult,
    ToolResultBlock,
    ToolUse,
    ToolUseBlock,
    Unrecognized,
    UserEcho,
)
from tether.constants import TODO_TOOL_NAME
from tether.session.channel import EventChannel
from tether.session.models import (
    ChatMessageEvent,
    ChatMessageFinalizeEvent,
    ChatMessageUpdateEvent,
    ErrorEvent,
    SessionIdChangedEvent,
    SystemInfoEvent,
    TodoUpdateEvent,
    TokenUsage,
    TokenUsageEvent,
    ToolResultEvent,
    ToolUseEvent,
)

logger = logging.getLogger(__name__)

#: Max characters of assistant text shown in debug logging.
_PREVIEW_LEN = 100


class DispatchHost(Protocol):
    """Session state a dispatcher is allowed to read and update."""

    @property
    def session_id(self) -> str | None: ...

    def adopt_session_id(self, new_id: str) -> None:
        """Make *new_id* the session's canonical id."""
        ...

    def record_usage(self, usage: TokenUsage) -> None:
        """Replace the session's token usage snapshot."""
        ...

    def end_turn(self) -> None:
        """Mark the turn as no longer processing."""
        ...


@dataclass
class StreamingMessage:
    """Assembler state for one assistant reply within a turn."""

    id: str
    accumulated_text: str = ""
    last_emitted_text: str = ""
    started: bool = False
    finalized: bool = False


def new_message_id(prefix: str) -> str:
    """Return a unique chat entry id such as ``msg-1a2b3c4d5e6f``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class TurnDispatcher:
    """Dispatches the protocol events of a single subprocess invocation.

    One instance exists per turn, so the streaming message and the
    duplicate-text state can never leak into the next turn.  Events are
    emitted synchronously, in the order :meth:`dispatch` is called.
    """

    def __init__(
        self,
        host: DispatchHost,
        channel: EventChannel,
        *,
        todo_tool: str = TODO_TOOL_NAME,
        dedup: DedupStrategy = "exact",
    ) -> None:
        self._host = host
        self._channel = channel
        self._todo_tool = todo_tool
        self._text_filter: DuplicateFilter = make_filter(dedup)
        self._stream: StreamingMessage | None = None
        self._last_assistant_text = ""

    @property
    def streaming_message(self) -> StreamingMessage | None:
        return self._stream

    @property
    def last_assistant_text(self) -> str:
        return self._last_assistant_text

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def dispatch(self, event: ProtocolEvent) -> None:
        """Emit the session events for one decoded protocol event."""
        if isinstance(event, SystemInit):
            self._on_init(event)
        elif isinstance(event, SystemUsage):
            self._emit_usage(event.usage)
        elif isinstance(event, UserEcho):
            self._on_user_echo(event)
        elif isinstance(event, AssistantChunk):
            self._on_assistant(event)
        elif isinstance(event, ToolUse):
            self._on_tool_use(event)
        elif isinstance(event, ToolResult):
            self._on_tool_result(event)
        elif isinstance(event, Result):
            self._on_result(event)
        elif isinstance(event, AgentError):
            self._on_error(event)
        elif isinstance(event, Unrecognized):
            logger.debug("Unknown message type: %s", event.raw.get("type"))

    def finish(self) -> None:
        """Close out the turn after the subprocess exited."""
        self._finalize_stream()

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    def _on_init(self, event: SystemInit) -> None:
        reported = event.session_id
        if reported:
            current = self._host.session_id
            if reported != current:
                logger.info(
                    "Agent changed session id from %s to %s", current, reported
                )
                self._host.adopt_session_id(reported)
                self._channel.emit(
                    SessionIdChangedEvent(old_id=current, new_id=reported)
                )
            else:
                logger.info("Agent confirmed session id %s", reported)

        self._channel.emit(
            SystemInfoEvent(
                session_id=reported,
                model=event.model,
                tools=event.tools,
                cwd=event.cwd,
            )
        )

    def _on_user_echo(self, event: UserEcho) -> None:
        for result in event.tool_results:
            self._emit_tool_result_block(result)
        for tool_use in event.tool_uses:
            self._emit_tool_use_block(tool_use)
        if event.has_other_content:
            logger.debug("Received user message with mixed content")

    def _on_assistant(self, event: AssistantChunk) -> None:
        if event.thinking:
            self._channel.emit(
                ChatMessageEvent(
                    message_id=new_message_id("thinking"),
                    kind="thinking",
                    content=event.thinking,
                    model=event.model,
                )
            )

        for tool_use in event.tool_uses:
            self._emit_tool_use_block(tool_use)
            todos = tool_use.input.get("todos")
            if tool_use.name == self._todo_tool and todos is not None:
                self._channel.emit(
                    TodoUpdateEvent(todos=todos if isinstance(todos, list) else [todos])
                )

        text = event.text
        if not text or self._text_filter.is_duplicate(text):
            return
        self._last_assistant_text = text

        if self._stream is None:
            self._stream = StreamingMessage(
                id=new_message_id("msg"),
                accumulated_text=text,
                last_emitted_text=text,
                started=True,
            )
            self._channel.emit(
                ChatMessageEvent(
                    message_id=self._stream.id,
                    kind="assistant",
                    content=text,
                    streaming=True,
                    model=event.model,
                    usage=event.usage,
                )
            )
        elif not self._stream.finalized:
            self._stream.accumulated_text = text
            self._stream.last_emitted_text = text
            self._channel.emit(
                ChatMessageUpdateEvent(
                    message_id=self._stream.id,
                    content=text,
                    model=event.model,
                    usage=event.usage,
                )
            )
        else:
            return

        if event.usage is not None:
            self._emit_usage(event.usage)
        logger.debug("Assistant message: %s", text[:_PREVIEW_LEN])

    def _on_tool_use(self, event: ToolUse) -> None:
        self._channel.emit(ToolUseEvent(tool=event.name, input=event.input))
        self._channel.emit(
            ChatMessageEvent(
                message_id=new_message_id("tool-use"),
                kind="tool_use",
                content=f"Using tool: {event.name}",
                tool_name=event.name,
                tool_input=event.input,
            )
        )

    def _on_tool_result(self, event: ToolResult) -> None:
        self._channel.emit(ToolResultEvent(tool=event.name, output=event.output))
        self._channel.emit(
            ChatMessageEvent(
                message_id=new_message_id("tool-result"),
                kind="tool_result",
                content=f"Tool result from: {event.name}",
                tool_name=event.name,
                tool_result=event.output,
            )
        )

    def _on_result(self, event: Result) -> None:
        if event.usage is not None:
            logger.debug(
                "Final token usage - input: %d, output: %d",
                event.usage.input_tokens,
                event.usage.output_tokens,
            )
            self._emit_usage(event.usage)
        if event.is_error:
            logger.warning("Agent reported an unsuccessful result: %s", event.result)

    def _on_error(self, event: AgentError) -> None:
        logger.error("Agent error: %s", event.message)
        self._channel.emit(ErrorEvent(error=event.message, context="agent"))
        self._finalize_stream()
        self._host.end_turn()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _emit_usage(self, usage: TokenUsage) -> None:
        self._host.record_usage(usage)
        self._channel.emit(TokenUsageEvent(usage=usage))

    def _emit_tool_use_block(self, block: ToolUseBlock) -> None:
        name = block.name or "Unknown"
        self._channel.emit(
            ChatMessageEvent(
                message_id=new_message_id("tool-use"),
                kind="tool_use",
                content=f"Using tool: {name}",
                tool_name=block.name or None,
                tool_input=block.input,
                tool_use_id=block.id,
            )
        )

    def _emit_tool_result_block(self, block: ToolResultBlock) -> None:
        self._channel.emit(
            ChatMessageEvent(
                message_id=new_message_id("tool-result"),
                kind="tool_result",
                content=tool_result_text(block.content) or "Tool result",
                tool_use_id=block.tool_use_id,
                tool_result=block.content,
            )
        )

    def _finalize_stream(self) -> None:
        stream = self._stream
        if stream is None or stream.finalized:
            return
        stream.finalized = True
        self._channel.emit(ChatMessageFinalizeEvent(message_id=stream.id))


def tool_result_text(content: Any) -> str:
    """Flatten a ``tool_result`` block's content into display text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        ]
        if parts:
            return "\n".join(parts)
    return json.dumps(content, default=str)
