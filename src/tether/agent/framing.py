"""Line framing and line decoding for the agent's stdout stream."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any

from tether.agent.protocol import AgentError
from tether.constants import MAX_LINE_BYTES

logger = logging.getLogger(__name__)

#: Substring that marks a non-JSON stdout line as an error report.
ERROR_MARKER = "Error:"


class LineFramer:
    """Turns arbitrary stdout chunks into complete lines.

    The trailing fragment after the last ``\\n`` is retained until a later
    chunk completes it.  Byte chunks are decoded incrementally, so a UTF-8
    sequence split across two reads is reassembled rather than mangled.

    A fragment whose UTF-8 encoding exceeds *max_line_bytes* is dropped, and
    so is the rest of that line up to the next newline.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._buffer = ""
        self._discarding = False
        self._max_line_bytes = max_line_bytes
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """The incomplete fragment currently buffered."""
        return self._buffer

    def decode(self, chunk: bytes | str) -> str:
        """Decode *chunk* to text without framing it."""
        if isinstance(chunk, bytes):
            return self._decoder.decode(chunk)
        return chunk

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append *chunk* and return every line it completed, in order."""
        return self.feed_text(self.decode(chunk))

    def feed_text(self, text: str) -> list[str]:
        """Like :meth:`feed` for text that was already decoded."""
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        if self._discarding:
            if not lines:
                self._buffer = ""
                return lines
            # Tail of the line that was already dropped.
            lines.pop(0)
            self._discarding = False

        if len(self._buffer.encode("utf-8")) > self._max_line_bytes:
            logger.warning(
                "Discarding partial line longer than %d bytes",
                self._max_line_bytes,
            )
            self._buffer = ""
            self._discarding = True
        return lines

    def flush(self) -> str:
        """Return and clear whatever fragment remains (used at EOF)."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if self._discarding:
            self._discarding = False
            return ""
        return rest


@dataclass
class DecodedLine:
    """Outcome of decoding one complete line.

    Exactly one of ``parsed`` / ``text`` is set.  ``error`` is set for
    non-JSON lines that look like an error report.
    """

    parsed: dict[str, Any] | None = None
    text: str | None = None
    error: AgentError | None = None


def decode_line(line: str) -> DecodedLine | None:
    """Decode one line.  Returns ``None`` for blank lines."""
    stripped = line.strip()
    if not stripped:
        return None

    try:
        obj = json.loads(stripped)
    except json.JSONDecodeError:
        obj = None

    if isinstance(obj, dict):
        return DecodedLine(parsed=obj)

    if ERROR_MARKER in stripped:
        logger.error("Agent error output: %s", stripped[:200])
        return DecodedLine(text=stripped, error=AgentError(message=stripped))

    logger.debug("Non-JSON output: %s", stripped[:100])
    return DecodedLine(text=stripped)
