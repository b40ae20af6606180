"""Session manager — a persistent conversation over per-turn agent subprocesses."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from tether.agent.arguments import ContinuityMode, build_args
from tether.agent.dedup import DedupStrategy
from tether.agent.dispatcher import TurnDispatcher
from tether.agent.framing import LineFramer, decode_line
from tether.agent.helpers import format_stderr_preview, spawn_agent
from tether.agent.protocol import decode_event
from tether.config.models import TetherConfig
from tether.constants import (
    DEBUG_DIR_NAME,
    DEFAULT_COMMAND,
    MAX_LINE_BYTES,
    READ_CHUNK_SIZE,
    STOP_GRACE,
    TODO_TOOL_NAME,
)
from tether.errors import NoActiveSessionError, SpawnError
from tether.session.channel import EventChannel
from tether.session.debug_log import DebugLog
from tether.session.models import (
    ErrorEvent,
    JsonDebugEvent,
    ProcessStoppedEvent,
    ReadyEvent,
    SessionStartedEvent,
    SessionStoppedEvent,
    TokenUsage,
)

logger = logging.getLogger(__name__)

#: Max characters of a prompt shown in log messages.
_PREVIEW_LEN = 50


@dataclass(frozen=True)
class SessionStatus:
    """Snapshot of a session manager's state."""

    active: bool
    session_id: str | None
    processing: bool
    turn_count: int
    continuity: ContinuityMode
    working_directory: Path


class SessionManager:
    """Owns one logical conversation with the agent CLI.

    Each prompt spawns a fresh ``claude --print`` subprocess; continuity
    across those processes comes from the flags chosen by
    :func:`tether.agent.arguments.build_args`.  Stdout is framed, decoded
    and dispatched as it arrives, and the resulting events are emitted on
    :attr:`channel` in read order.

    At most one subprocess is *active* at a time.  A turn that ended early
    on an agent error leaves its subprocess draining in the background; it
    is terminated when the next prompt is spawned or the session stops.
    """

    def __init__(
        self,
        working_directory: Path | None = None,
        *,
        command: str = DEFAULT_COMMAND,
        extra_args: Sequence[str] = (),
        debug_dir_name: str = DEBUG_DIR_NAME,
        stop_grace: float = STOP_GRACE,
        todo_tool: str = TODO_TOOL_NAME,
        dedup: DedupStrategy = "exact",
        max_line_bytes: int = MAX_LINE_BYTES,
        read_chunk_size: int = READ_CHUNK_SIZE,
        channel: EventChannel | None = None,
    ) -> None:
        self._default_directory = working_directory or Path.cwd()
        self._command = command
        self._extra_args = tuple(extra_args)
        self._debug_dir_name = debug_dir_name
        self._stop_grace = stop_grace
        self._todo_tool = todo_tool
        self._dedup: DedupStrategy = dedup
        self._max_line_bytes = max_line_bytes
        self._read_chunk_size = read_chunk_size
        self._channel = channel if channel is not None else EventChannel()

        # Session state.
        self._session_id: str | None = None
        self._turn_count = 0
        self._continuity = ContinuityMode.NEW
        self._working_directory = self._default_directory
        self._processing = False
        self._usage: TokenUsage | None = None
        self._debug_log: DebugLog | None = None

        # Subprocess state.
        self._active_process: asyncio.subprocess.Process | None = None
        self._draining: set[asyncio.subprocess.Process] = set()
        self._reader_task: asyncio.Task[None] | None = None
        # Bumped by interrupts and resets; a spawn that finishes under an
        # older value is discarded.
        self._generation = 0
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(
        cls,
        config: TetherConfig,
        working_directory: Path | None = None,
        channel: EventChannel | None = None,
    ) -> SessionManager:
        """Build a manager from a loaded :class:`TetherConfig`."""
        return cls(
            config.resolve_working_directory(working_directory),
            command=config.agent.command,
            extra_args=config.agent.extra_args,
            debug_dir_name=config.session.debug_dir,
            stop_grace=config.session.stop_grace,
            todo_tool=config.session.todo_tool,
            dedup=config.session.dedup,
            max_line_bytes=config.agent.max_line_bytes,
            read_chunk_size=config.agent.read_chunk_size,
            channel=channel,
        )

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def channel(self) -> EventChannel:
        """The channel every event of this session is emitted on."""
        return self._channel

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def turn_count(self) -> int:
        return self._turn_count

    @property
    def continuity(self) -> ContinuityMode:
        return self._continuity

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def working_directory(self) -> Path:
        return self._working_directory

    @property
    def active_process(self) -> asyncio.subprocess.Process | None:
        return self._active_process

    @property
    def token_usage(self) -> TokenUsage | None:
        """Latest usage snapshot reported by the agent."""
        return self._usage

    @property
    def debug_log_path(self) -> Path | None:
        return self._debug_log.path if self._debug_log is not None else None

    def status(self) -> SessionStatus:
        return SessionStatus(
            active=self._session_id is not None,
            session_id=self._session_id,
            processing=self._processing,
            turn_count=self._turn_count,
            continuity=self._continuity,
            working_directory=self._working_directory,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(
        self,
        working_directory: Path | None = None,
        requested_id: str | None = None,
        is_new_session: bool = False,
    ) -> str:
        """Attach to, create, or keep a session.  Returns the session id.

        * Same id as the current session: only the working directory is
          updated; the turn count is preserved.
        * Another id with ``is_new_session``: a brand-new session under it.
        * Another id without ``is_new_session``: resume that session.
        * No id and no current session: a new session with a fresh id.
        * No id otherwise: the current session is kept as is.
        """
        if requested_id is not None and requested_id == self._session_id:
            logger.info(
                "Session %s already active, keeping turn count %d",
                requested_id,
                self._turn_count,
            )
            if working_directory is not None:
                self._set_working_directory(working_directory)
        elif requested_id is not None:
            self._reset()
            self._session_id = requested_id
            self._turn_count = 0
            if is_new_session:
                self._continuity = ContinuityMode.NEW
                logger.info("Starting brand new session with id %s", requested_id)
            else:
                self._continuity = ContinuityMode.RESUMING
                logger.info("Switching to existing session %s", requested_id)
            self._working_directory = working_directory or self._default_directory
            self._open_debug_log()
        elif self._session_id is None:
            self._session_id = str(uuid.uuid4())
            self._turn_count = 0
            self._continuity = ContinuityMode.NEW
            self._working_directory = working_directory or self._default_directory
            self._open_debug_log()
            logger.info("Created new session with id %s", self._session_id)
        else:
            logger.info(
                "Keeping current session %s (turn %d, %s)",
                self._session_id,
                self._turn_count,
                self._continuity.value,
            )
            if working_directory is not None:
                self._set_working_directory(working_directory)

        assert self._session_id is not None
        logger.info(
            "Session %s ready in %s", self._session_id, self._working_directory
        )
        self._channel.emit(SessionStartedEvent(session_id=self._session_id))
        self._channel.emit(ReadyEvent())
        return self._session_id

    async def stop(self) -> None:
        """Terminate any subprocess and forget the session."""
        if self._terminate_owned():
            await asyncio.sleep(self._stop_grace)
        self._reset()
        self._channel.emit(SessionStoppedEvent())

    async def close(self) -> None:
        """Stop the session and close its event channel."""
        await self.stop()
        self._channel.close()

    # ------------------------------------------------------------------ #
    # Turns
    # ------------------------------------------------------------------ #

    async def send_prompt(self, prompt: str) -> bool:
        """Start a turn for *prompt*.

        Returns once the subprocess is spawned (or failed to spawn), not
        when the turn completes; see :meth:`wait_idle`.  Returns ``False``
        if a turn is already in flight and the prompt was ignored.

        Raises:
            NoActiveSessionError: If :meth:`start` was never called.
        """
        if self._session_id is None:
            msg = "No active session"
            raise NoActiveSessionError(msg)

        if self._processing:
            logger.warning("Already processing a prompt, ignoring new prompt")
            return False

        self._processing = True
        self._turn_count += 1
        logger.info(
            "Processing prompt %d for session %s: %r",
            self._turn_count,
            self._session_id,
            prompt[:_PREVIEW_LEN],
        )
        if self._debug_log is not None:
            self._debug_log.log_prompt(prompt, self._turn_count)

        await self._spawn(prompt)
        return True

    async def interrupt_current(self) -> None:
        """Cancel the in-flight turn, keeping the session and its turn count.

        A no-op when no turn is in flight.  An interrupt that arrives while
        the subprocess is still being spawned cancels the turn; the process
        is terminated as soon as the spawn completes.
        """
        proc = self._active_process
        if proc is None and not self._processing:
            logger.info("No active agent process to stop")
            return

        if proc is None:
            logger.info("Interrupting turn before its agent process started")
            self._generation += 1
        else:
            logger.info("Stopping current agent process (pid %s)", proc.pid)
            _terminate(proc)
            self._active_process = None
        self._processing = False
        await asyncio.sleep(self._stop_grace)
        self._channel.emit(ReadyEvent())
        self._channel.emit(ProcessStoppedEvent(reason="user_interrupted"))

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until the latest turn's output has been fully processed."""
        task = self._reader_task
        if task is None or task.done():
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    # ------------------------------------------------------------------ #
    # Subprocess handling
    # ------------------------------------------------------------------ #

    async def _spawn(self, prompt: str) -> None:
        self._generation += 1
        generation = self._generation
        if self._terminate_owned():
            logger.info("Terminated previous agent process before new turn")

        args = build_args(
            prompt,
            self._turn_count,
            self._continuity,
            self._session_id,
            command=self._command,
            extra_args=self._extra_args,
        )
        logger.info(
            "Turn %d (%s): %s",
            self._turn_count,
            self._continuity.value,
            " ".join(args[:-1]),
        )

        try:
            proc = await spawn_agent(args, cwd=self._working_directory)
        except SpawnError as exc:
            if generation != self._generation:
                logger.info("Spawn failed after the turn was cancelled: %s", exc)
                return
            logger.error("%s", exc)
            self._channel.emit(ErrorEvent(error=str(exc), context="spawn"))
            self._processing = False
            self._channel.emit(ReadyEvent())
            return

        if generation != self._generation:
            logger.info("Turn cancelled during spawn; stopping pid %s", proc.pid)
            _terminate(proc)
            task = asyncio.create_task(_reap(proc))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return

        self._active_process = proc
        dispatcher = TurnDispatcher(
            _TurnHost(self, proc),
            self._channel,
            todo_tool=self._todo_tool,
            dedup=self._dedup,
        )
        self._reader_task = asyncio.create_task(self._pump(proc, dispatcher))

    async def _pump(
        self,
        proc: asyncio.subprocess.Process,
        dispatcher: TurnDispatcher,
    ) -> None:
        """Read *proc*'s stdout to EOF, dispatching each line in order."""
        framer = LineFramer(self._max_line_bytes)
        log = self._debug_log
        stderr_task: asyncio.Task[bytes] | None = None
        if proc.stderr is not None:
            stderr_task = asyncio.create_task(proc.stderr.read())

        try:
            if proc.stdout is not None:
                while True:
                    chunk = await proc.stdout.read(self._read_chunk_size)
                    if not chunk:
                        break
                    text = framer.decode(chunk)
                    if text and log is not None and log.log_raw(text):
                        self._channel.emit(JsonDebugEvent(raw=text))
                    for line in framer.feed_text(text):
                        self._handle_line(proc, line, dispatcher, log)
                rest = framer.flush()
                if rest:
                    self._handle_line(proc, rest, dispatcher, log)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Error reading agent stdout: %s", exc)

        stderr_bytes = b""
        if stderr_task is not None:
            try:
                stderr_bytes = await stderr_task
            except OSError as exc:
                logger.debug("Could not read agent stderr: %s", exc)

        returncode = await proc.wait()
        self._on_exit(proc, dispatcher, returncode, stderr_bytes)

    def _handle_line(
        self,
        proc: asyncio.subprocess.Process,
        line: str,
        dispatcher: TurnDispatcher,
        log: DebugLog | None,
    ) -> None:
        decoded = decode_line(line)
        if decoded is None:
            return

        if decoded.parsed is not None and log is not None:
            if log.log_parsed(decoded.parsed):
                self._channel.emit(JsonDebugEvent(parsed=decoded.parsed))

        if not self._owns(proc):
            # Interrupted or replaced; its output no longer belongs to a turn.
            return

        if decoded.parsed is not None:
            dispatcher.dispatch(decode_event(decoded.parsed))
        elif decoded.error is not None:
            dispatcher.dispatch(decoded.error)

    def _on_exit(
        self,
        proc: asyncio.subprocess.Process,
        dispatcher: TurnDispatcher,
        returncode: int,
        stderr_bytes: bytes,
    ) -> None:
        logger.debug("Agent process exited with code %s", returncode)
        dispatcher.finish()

        if proc is self._active_process:
            if returncode != 0:
                stderr_text = stderr_bytes.decode(errors="replace").strip()
                error_msg = f"Agent exited with code {returncode}."
                preview = format_stderr_preview(stderr_text)
                if preview:
                    error_msg += f" Stderr:\n  {preview}"
                logger.error("%s", error_msg)
                self._channel.emit(ErrorEvent(error=error_msg, context="subprocess"))
            self._active_process = None
            self._processing = False
            self._channel.emit(ReadyEvent())
        elif proc in self._draining:
            self._draining.discard(proc)
            if not self._processing:
                self._channel.emit(ReadyEvent())

    # ------------------------------------------------------------------ #
    # State helpers (also used by _TurnHost)
    # ------------------------------------------------------------------ #

    def _owns(self, proc: asyncio.subprocess.Process) -> bool:
        return proc is self._active_process or proc in self._draining

    def _end_turn(self, proc: asyncio.subprocess.Process) -> None:
        if proc is self._active_process:
            self._active_process = None
            self._draining.add(proc)
            self._processing = False

    def _adopt_session_id(self, new_id: str) -> None:
        self._session_id = new_id
        if self._debug_log is not None:
            self._debug_log.rekey(new_id)

    def _terminate_owned(self) -> bool:
        """Terminate the active and any draining subprocess."""
        procs = list(self._draining)
        if self._active_process is not None:
            procs.append(self._active_process)
        for proc in procs:
            _terminate(proc)
        self._active_process = None
        self._draining.clear()
        return bool(procs)

    def _reset(self) -> None:
        self._generation += 1
        self._terminate_owned()
        if self._debug_log is not None:
            self._debug_log.close()
        self._debug_log = None
        self._session_id = None
        self._turn_count = 0
        self._continuity = ContinuityMode.NEW
        self._processing = False
        self._usage = None
        self._working_directory = self._default_directory

    def _set_working_directory(self, working_directory: Path) -> None:
        if working_directory == self._working_directory:
            return
        self._working_directory = working_directory
        self._open_debug_log()

    def _open_debug_log(self) -> None:
        if self._debug_log is not None:
            self._debug_log.close()
        assert self._session_id is not None
        self._debug_log = DebugLog(
            self._working_directory / self._debug_dir_name,
            self._session_id,
            dedup=self._dedup,
        )


class _TurnHost:
    """The view of a :class:`SessionManager` handed to one turn's dispatcher."""

    def __init__(
        self,
        manager: SessionManager,
        proc: asyncio.subprocess.Process,
    ) -> None:
        self._manager = manager
        self._proc = proc

    @property
    def session_id(self) -> str | None:
        return self._manager.session_id

    def adopt_session_id(self, new_id: str) -> None:
        self._manager._adopt_session_id(new_id)

    def record_usage(self, usage: TokenUsage) -> None:
        self._manager._usage = usage

    def end_turn(self) -> None:
        self._manager._end_turn(self._proc)


def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Drain and wait for a process whose turn was cancelled."""
    try:
        await proc.communicate()
    except OSError as exc:
        logger.debug("Could not reap agent process %s: %s", proc.pid, exc)
