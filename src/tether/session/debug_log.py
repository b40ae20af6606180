"""Debug log — append-only JSONL transcript of one session's raw traffic."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import IO, Any

from tether.agent.dedup import DedupStrategy, DuplicateFilter, make_filter
from tether.session.channel import iso_now

logger = logging.getLogger(__name__)

#: Filename pattern for session logs inside the debug directory.
LOG_PREFIX = "session-"
LOG_SUFFIX = ".json"


def log_path_for(debug_dir: Path, session_id: str) -> Path:
    """Return the log file path for *session_id* inside *debug_dir*."""
    return debug_dir / f"{LOG_PREFIX}{session_id}{LOG_SUFFIX}"


class DebugLog:
    """Appends ``{timestamp, raw|parsed|...}`` records for one session.

    The file is keyed by the session's current canonical id; :meth:`rekey`
    switches to a new file when the agent renames the session.  Records are
    never rewritten.  A raw chunk or parsed object identical to the record
    written immediately before it is skipped, which suppresses the
    duplicate echoes the agent CLI tends to produce.

    Write failures are logged and otherwise ignored: losing debug output
    must never fail a turn.
    """

    def __init__(
        self,
        debug_dir: Path,
        session_id: str,
        dedup: DedupStrategy = "exact",
    ) -> None:
        self._debug_dir = debug_dir
        self._session_id = session_id
        self._filter: DuplicateFilter = make_filter(dedup)
        self._fh: IO[str] | None = None
        self._closed = False

    @property
    def path(self) -> Path:
        return log_path_for(self._debug_dir, self._session_id)

    @property
    def session_id(self) -> str:
        return self._session_id

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def log_raw(self, chunk: str) -> bool:
        """Record a raw stdout chunk.  Returns ``False`` if it was a duplicate."""
        if self._filter.is_duplicate(chunk):
            return False
        self._write({"raw": chunk})
        return True

    def log_parsed(self, obj: dict[str, Any]) -> bool:
        """Record a parsed protocol object.  Returns ``False`` if it was a duplicate."""
        if self._filter.is_duplicate(json.dumps(obj, separators=(",", ":"))):
            return False
        self._write({"parsed": obj})
        return True

    def log_prompt(self, prompt: str, turn: int) -> None:
        """Record a user prompt (never deduplicated)."""
        self._write(
            {
                "type": "user",
                "prompt": prompt,
                "sessionId": self._session_id,
                "messageCount": turn,
            }
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def rekey(self, session_id: str) -> None:
        """Continue logging under *session_id*'s file."""
        if session_id == self._session_id:
            return
        self._close_handle()
        self._session_id = session_id

    def close(self) -> None:
        """Close the file handle.  Idempotent."""
        self._closed = True
        self._close_handle()

    def _write(self, payload: dict[str, Any]) -> None:
        if self._closed:
            return
        line = json.dumps({"timestamp": iso_now(), **payload}, default=str)
        try:
            if self._fh is None:
                self._debug_dir.mkdir(parents=True, exist_ok=True)
                self._fh = self.path.open("a", encoding="utf-8")
            self._fh.write(line + "\n")
            self._fh.flush()
        except OSError as exc:
            logger.warning("Failed to write debug log %s: %s", self.path, exc)

    def _close_handle(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.close()
        self._fh = None
