"""Rebuild conversations from session debug logs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from tether.session.debug_log import LOG_PREFIX, LOG_SUFFIX

logger = logging.getLogger(__name__)

#: Characters of the last user prompt kept in a session summary.
_PROMPT_PREVIEW_LEN = 50


@dataclass
class TranscriptEntry:
    """One user prompt or assistant reply."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: str | None = None
    model: str | None = None
    output_tokens: int | None = None


@dataclass
class Transcript:
    """A session's conversation replayed from its log file."""

    session_id: str
    canonical_id: str | None
    file_path: Path
    entries: list[TranscriptEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SessionSummary:
    """Metadata for one logged session."""

    session_id: str
    canonical_id: str | None
    file_path: Path
    first_ts: datetime | None
    last_ts: datetime | None
    message_count: int
    last_user_prompt: str

    @property
    def rekeyed(self) -> bool:
        """True when the agent knows this session by another id."""
        return self.canonical_id is not None and self.canonical_id != self.session_id


def read_records(path: Path) -> tuple[list[dict[str, Any]], list[str]]:
    """Read every JSON record from a log file, skipping malformed lines."""
    records: list[dict[str, Any]] = []
    warnings: list[str] = []

    with path.open("r", encoding="utf-8") as fh:
        for line_num, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                warnings.append(f"Line {line_num}: Invalid JSON — {e}")
                continue
            if not isinstance(record, dict):
                warnings.append(f"Line {line_num}: Expected an object")
                continue
            records.append(record)

    return records, warnings


def canonical_session_id(records: list[dict[str, Any]]) -> str | None:
    """Return the id from the last ``system/init`` record, if any."""
    canonical: str | None = None
    for record in records:
        parsed = record.get("parsed")
        if (
            isinstance(parsed, dict)
            and parsed.get("type") == "system"
            and parsed.get("subtype") == "init"
            and isinstance(parsed.get("session_id"), str)
        ):
            canonical = parsed["session_id"]
    return canonical


def build_entries(records: list[dict[str, Any]]) -> list[TranscriptEntry]:
    """Turn log records into transcript entries.

    Assistant records that resend (or extend) the previous reply collapse
    into a single entry holding the final text.
    """
    entries: list[TranscriptEntry] = []

    for record in records:
        timestamp = record.get("timestamp")
        ts = timestamp if isinstance(timestamp, str) else None

        if record.get("type") == "user" and isinstance(record.get("prompt"), str):
            entries.append(TranscriptEntry("user", record["prompt"], ts))
            continue

        parsed = record.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") != "assistant":
            continue
        message = parsed.get("message")
        if not isinstance(message, dict):
            continue

        text = _message_text(message)
        if not text:
            continue
        model = message.get("model")
        usage = message.get("usage")
        output_tokens = usage.get("output_tokens") if isinstance(usage, dict) else None
        entry = TranscriptEntry(
            "assistant",
            text,
            ts,
            model=model if isinstance(model, str) else None,
            output_tokens=output_tokens if isinstance(output_tokens, int) else None,
        )

        previous = entries[-1] if entries else None
        if previous is not None and previous.role == "assistant":
            if text == previous.content:
                continue
            if text.startswith(previous.content):
                entries[-1] = entry
                continue
        entries.append(entry)

    return entries


def load_transcript(path: Path) -> Transcript:
    """Replay one session log file."""
    records, warnings = read_records(path)
    return Transcript(
        session_id=_session_id_from_path(path),
        canonical_id=canonical_session_id(records),
        file_path=path,
        entries=build_entries(records),
        warnings=warnings,
    )


def list_sessions(debug_dir: Path) -> list[SessionSummary]:
    """Summarize every session log in *debug_dir*, most recent first."""
    if not debug_dir.is_dir():
        return []

    summaries: list[SessionSummary] = []
    for path in sorted(debug_dir.glob(f"{LOG_PREFIX}*{LOG_SUFFIX}")):
        try:
            records, _ = read_records(path)
        except OSError as exc:
            logger.warning("Cannot read session log %s: %s", path, exc)
            continue

        timestamps = [
            ts for ts in (_parse_ts(r.get("timestamp")) for r in records) if ts
        ]
        entries = build_entries(records)
        prompts = [e.content for e in entries if e.role == "user"]
        summaries.append(
            SessionSummary(
                session_id=_session_id_from_path(path),
                canonical_id=canonical_session_id(records),
                file_path=path,
                first_ts=min(timestamps) if timestamps else None,
                last_ts=max(timestamps) if timestamps else None,
                message_count=len(entries),
                last_user_prompt=prompts[-1][:_PROMPT_PREVIEW_LEN] if prompts else "",
            )
        )

    summaries.sort(
        key=lambda s: s.last_ts.timestamp() if s.last_ts else 0.0,
        reverse=True,
    )
    return summaries


def find_session_file(debug_dir: Path, session_id: str) -> Path | None:
    """Locate the log for *session_id*, following agent-side re-keying.

    A session renamed by the agent is found either under its own file or
    through a log whose ``system/init`` record reports *session_id*.
    """
    direct = debug_dir / f"{LOG_PREFIX}{session_id}{LOG_SUFFIX}"
    if direct.is_file():
        return direct
    for summary in list_sessions(debug_dir):
        if summary.canonical_id == session_id:
            return summary.file_path
    return None


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if not isinstance(content, list):
        return ""
    return "".join(
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def _session_id_from_path(path: Path) -> str:
    name = path.name
    return name[len(LOG_PREFIX) : len(name) - len(LOG_SUFFIX)]


def _parse_ts(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def transcript_text(entries: list[TranscriptEntry]) -> str:
    """Render entries as plain ``User:`` / ``Assistant:`` paragraphs."""
    labels = {"user": "User", "assistant": "Assistant"}
    return "\n\n".join(f"{labels[e.role]}: {e.content}" for e in entries)
