"""Shadow tasks — one-shot agent invocations outside any session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from pathlib import Path

from tether.agent.arguments import shadow_args
from tether.agent.framing import LineFramer, decode_line
from tether.agent.helpers import format_stderr_preview, spawn_agent
from tether.agent.protocol import AgentError, AssistantChunk, decode_event
from tether.config.models import TetherConfig
from tether.constants import (
    DEFAULT_COMMAND,
    KILL_WAIT,
    MAX_LINE_BYTES,
    READ_CHUNK_SIZE,
    SHADOW_TIMEOUT,
)
from tether.errors import ShadowAgentError, ShadowEmptyResultError, ShadowTimeoutError

logger = logging.getLogger(__name__)

#: Seconds to wait for stderr EOF once the shadow process is gone.
_STDERR_WAIT = 1.0

SUMMARY_PROMPT = """\
You are being asked to summarize a conversation between a user and Claude Code.
Please provide a concise summary of the conversation, focusing on:
1. The main task or problem being worked on
2. Key decisions and solutions implemented
3. Current status and any unresolved issues
4. Important context that should be preserved

Keep the summary focused and under 500 words. Format it as if you're \
continuing the conversation.

Here is the conversation to summarize:

{conversation}

Please provide a clear, concise summary that captures the essence of this \
conversation:"""


def build_summary_prompt(conversation_text: str) -> str:
    return SUMMARY_PROMPT.format(conversation=conversation_text)


class ShadowTaskRunner:
    """Runs time-boxed, single-shot agent tasks such as summarization.

    Every call spawns its own subprocess and shares no state with any
    :class:`~tether.agent.session.SessionManager`: no session flags are
    passed, nothing is logged to a session's debug log, and no events are
    emitted.  Results are returned or raised directly.
    """

    def __init__(
        self,
        working_directory: Path | None = None,
        *,
        command: str = DEFAULT_COMMAND,
        extra_args: Sequence[str] = (),
        timeout: float = SHADOW_TIMEOUT,
        max_line_bytes: int = MAX_LINE_BYTES,
        read_chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._working_directory = working_directory
        self._command = command
        self._extra_args = tuple(extra_args)
        self._timeout = timeout
        self._max_line_bytes = max_line_bytes
        self._read_chunk_size = read_chunk_size

    @classmethod
    def from_config(
        cls,
        config: TetherConfig,
        working_directory: Path | None = None,
    ) -> ShadowTaskRunner:
        return cls(
            config.resolve_working_directory(working_directory),
            command=config.agent.command,
            extra_args=config.agent.extra_args,
            timeout=config.shadow.timeout,
            max_line_bytes=config.agent.max_line_bytes,
            read_chunk_size=config.agent.read_chunk_size,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    async def summarize(self, conversation_text: str) -> str:
        """Summarize *conversation_text* with a one-shot agent run."""
        logger.info("Starting shadow summarization")
        return await self.run(build_summary_prompt(conversation_text))

    async def run(self, prompt: str) -> str:
        """Run *prompt* once and return the assistant's text.

        Raises:
            SpawnError: If the agent CLI could not be started.
            ShadowTimeoutError: If the run exceeded the timeout.
            ShadowAgentError: If the agent emitted an error event.
            ShadowEmptyResultError: If the agent exited without any text.
        """
        args = shadow_args(prompt, command=self._command, extra_args=self._extra_args)
        proc = await spawn_agent(args, cwd=self._working_directory)

        # Stderr must be drained alongside stdout or proc.wait() never returns.
        stderr_task: asyncio.Task[bytes] | None = None
        if proc.stderr is not None:
            stderr_task = asyncio.create_task(proc.stderr.read())

        try:
            text, returncode = await asyncio.wait_for(
                self._collect(proc), timeout=self._timeout
            )
        except TimeoutError:
            await _kill(proc)
            msg = f"Shadow task timed out after {self._timeout:g}s"
            raise ShadowTimeoutError(msg) from None
        except ShadowAgentError:
            await _kill(proc)
            raise
        finally:
            stderr_bytes = await _finish_stderr(stderr_task)

        if not text.strip():
            msg = f"Shadow task produced no text (exit code {returncode})"
            preview = format_stderr_preview(
                stderr_bytes.decode(errors="replace").strip()
            )
            if preview:
                msg += f". Stderr:\n  {preview}"
            raise ShadowEmptyResultError(msg)
        return text

    async def _collect(self, proc: asyncio.subprocess.Process) -> tuple[str, int]:
        """Accumulate assistant text from *proc* until it exits."""
        framer = LineFramer(self._max_line_bytes)
        text = ""

        if proc.stdout is not None:
            while True:
                chunk = await proc.stdout.read(self._read_chunk_size)
                if not chunk:
                    break
                for line in framer.feed(chunk):
                    text = self._consume(line, text)
            rest = framer.flush()
            if rest:
                text = self._consume(rest, text)

        returncode = await proc.wait()
        logger.info("Shadow process exited with code %s", returncode)
        return text, returncode

    def _consume(self, line: str, text: str) -> str:
        decoded = decode_line(line)
        if decoded is None or decoded.parsed is None:
            if decoded is not None:
                logger.debug("Shadow non-JSON output: %s", decoded.text)
            return text

        event = decode_event(decoded.parsed)
        if isinstance(event, AgentError):
            raise ShadowAgentError(event.message)
        if isinstance(event, AssistantChunk):
            return merge_assistant_text(text, event.text)
        return text


def merge_assistant_text(accumulated: str, chunk: str) -> str:
    """Fold one assistant chunk into the text gathered so far.

    A chunk that repeats or extends the accumulated text replaces it (the
    agent resends the whole reply); anything else is a new message and is
    appended.
    """
    if not chunk or chunk == accumulated:
        return accumulated
    if chunk.startswith(accumulated):
        return chunk
    return f"{accumulated}\n\n{chunk}"


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* and reap it, giving up after :data:`KILL_WAIT` seconds."""
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    drain = asyncio.create_task(_drain(proc.stdout)) if proc.stdout else None
    try:
        await asyncio.wait_for(proc.wait(), timeout=KILL_WAIT)
    except TimeoutError:
        logger.warning("Shadow process %s not reaped after kill", proc.pid)
    finally:
        if drain is not None:
            drain.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await drain


async def _drain(stream: asyncio.StreamReader) -> None:
    while await stream.read(READ_CHUNK_SIZE):
        pass


async def _finish_stderr(task: asyncio.Task[bytes] | None) -> bytes:
    """Return what the stderr drain collected, waiting briefly for EOF."""
    if task is None:
        return b""
    try:
        return await asyncio.wait_for(task, timeout=_STDERR_WAIT)
    except TimeoutError:
        logger.debug("Shadow stderr still open; discarding it")
    except OSError as exc:
        logger.debug("Could not read shadow stderr: %s", exc)
    return b""
