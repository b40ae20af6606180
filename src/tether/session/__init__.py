"""Session events, their per-session channel, and the debug log."""

from tether.session.channel import EventChannel
from tether.session.debug_log import DebugLog
from tether.session.models import (
    ChatMessageEvent,
    ChatMessageFinalizeEvent,
    ChatMessageUpdateEvent,
    ErrorEvent,
    JsonDebugEvent,
    ProcessStoppedEvent,
    ReadyEvent,
    SessionEvent,
    SessionIdChangedEvent,
    SessionStartedEvent,
    SessionStoppedEvent,
    SystemInfoEvent,
    TodoUpdateEvent,
    TokenUsage,
    TokenUsageEvent,
    ToolResultEvent,
    ToolUseEvent,
)

__all__ = [
    "ChatMessageEvent",
    "ChatMessageFinalizeEvent",
    "ChatMessageUpdateEvent",
    "DebugLog",
    "ErrorEvent",
    "EventChannel",
    "JsonDebugEvent",
    "ProcessStoppedEvent",
    "ReadyEvent",
    "SessionEvent",
    "SessionIdChangedEvent",
    "SessionStartedEvent",
    "SessionStoppedEvent",
    "SystemInfoEvent",
    "TodoUpdateEvent",
    "TokenUsage",
    "TokenUsageEvent",
    "ToolResultEvent",
    "ToolUseEvent",
]
