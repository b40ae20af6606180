"""Tests for the session manager."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tether.agent.arguments import CONTINUE_FLAG, SESSION_ID_FLAG, ContinuityMode
from tether.agent.session import SessionManager
from tether.errors import NoActiveSessionError
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
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


class MockAsyncStdout:
    """Async-aware mock stdout that yields chunks on demand.

    Chunks can be added at any time via ``feed()``.  ``read()`` blocks
    until a chunk is available or ``close()`` is called.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()

    def feed(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def feed_json(self, obj: dict[str, Any]) -> None:
        self.feed(json.dumps(obj).encode() + b"\n")

    def close(self) -> None:
        """Signal EOF."""
        self._queue.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._queue.get()


def _make_mock_process(
    returncode: int = 0,
    stderr: bytes = b"",
) -> tuple[MagicMock, MockAsyncStdout]:
    stdout = MockAsyncStdout()
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = None
    proc.stdout = stdout
    proc.stderr = MagicMock()
    proc.stderr.read = AsyncMock(return_value=stderr)
    proc.wait = AsyncMock(return_value=returncode)
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    return proc, stdout


def _assistant(text: str) -> dict[str, Any]:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


def _init(session_id: str) -> dict[str, Any]:
    return {"type": "system", "subtype": "init", "session_id": session_id, "model": "m"}


async def _until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.fixture
def events() -> list[SessionEvent]:
    return []


@pytest.fixture
def manager(tmp_path: Path, events: list[SessionEvent]) -> SessionManager:
    mgr = SessionManager(tmp_path, stop_grace=0)
    mgr.channel.subscribe(events.append)
    return mgr


def _of_type(events: list[SessionEvent], cls: type) -> list[Any]:
    return [e for e in events if isinstance(e, cls)]


# ------------------------------------------------------------------ #
# start()
# ------------------------------------------------------------------ #


class TestStart:
    async def test_fresh_session(
        self, manager: SessionManager, events: list[SessionEvent], tmp_path: Path
    ) -> None:
        session_id = await manager.start()
        assert manager.session_id == session_id
        assert manager.turn_count == 0
        assert manager.continuity is ContinuityMode.NEW
        assert manager.debug_log_path == tmp_path / ".claude-debug" / f"session-{session_id}.json"
        assert isinstance(events[0], SessionStartedEvent)
        assert isinstance(events[1], ReadyEvent)

    async def test_requested_new_id(self, manager: SessionManager) -> None:
        assert await manager.start(requested_id="abc", is_new_session=True) == "abc"
        assert manager.continuity is ContinuityMode.NEW

    async def test_requested_existing_id_resumes(self, manager: SessionManager) -> None:
        await manager.start(requested_id="abc")
        assert manager.continuity is ContinuityMode.RESUMING

    async def test_no_id_keeps_current_session(self, manager: SessionManager) -> None:
        first = await manager.start()
        assert await manager.start() == first

    async def test_switching_resets_turn_count(self, manager: SessionManager) -> None:
        proc, stdout = _make_mock_process()
        stdout.close()
        await manager.start(requested_id="a", is_new_session=True)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hi")
            await manager.wait_idle(timeout=1.0)
        await manager.start(requested_id="b")
        assert manager.turn_count == 0
        assert manager.session_id == "b"

    async def test_same_id_preserves_turn_count(
        self, manager: SessionManager, tmp_path: Path
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.close()
        proc2, stdout2 = _make_mock_process()
        stdout2.close()
        await manager.start(requested_id="abc", is_new_session=True)

        with patch("asyncio.create_subprocess_exec", side_effect=[proc, proc2]) as mock_exec:
            await manager.send_prompt("one")
            await manager.wait_idle(timeout=1.0)

            other = tmp_path / "other"
            await manager.start(other, requested_id="abc")
            assert manager.turn_count == 1
            assert manager.working_directory == other

            await manager.send_prompt("two")
            await manager.wait_idle(timeout=1.0)

        second_args = mock_exec.call_args_list[1].args
        assert CONTINUE_FLAG in second_args
        assert SESSION_ID_FLAG not in second_args
        assert mock_exec.call_args_list[1].kwargs["cwd"] == str(other)
        assert manager.turn_count == 2


# ------------------------------------------------------------------ #
# send_prompt()
# ------------------------------------------------------------------ #


class TestSendPrompt:
    async def test_requires_session(self, manager: SessionManager) -> None:
        with pytest.raises(NoActiveSessionError):
            await manager.send_prompt("hi")

    async def test_full_turn(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed_json(_init("s1"))
        stdout.feed_json(_assistant("Hi"))
        stdout.feed_json(_assistant("Hi there"))
        stdout.feed_json(_assistant("Hi there"))
        stdout.feed_json({"type": "result", "result": "Hi there", "usage": {"output_tokens": 3}})
        stdout.close()

        await manager.start(requested_id="s1", is_new_session=True)
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            assert await manager.send_prompt("hello") is True
            assert manager.processing is True
            await manager.wait_idle(timeout=1.0)

        args = mock_exec.call_args.args
        assert args[args.index(SESSION_ID_FLAG) + 1] == "s1"
        assert args[-1] == "hello"

        assert len(_of_type(events, ChatMessageEvent)) == 1
        assert len(_of_type(events, ChatMessageUpdateEvent)) == 1
        assert len(_of_type(events, ChatMessageFinalizeEvent)) == 1
        assert not _of_type(events, SessionIdChangedEvent)
        assert isinstance(events[-1], ReadyEvent)
        assert manager.processing is False
        assert manager.active_process is None
        assert manager.turn_count == 1
        assert manager.token_usage is not None
        assert manager.token_usage.output_tokens == 3

    async def test_debug_log_written(self, manager: SessionManager) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed_json(_assistant("Hi"))
        stdout.close()

        await manager.start(requested_id="s1", is_new_session=True)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hello")
            await manager.wait_idle(timeout=1.0)

        assert manager.debug_log_path is not None
        records = [json.loads(line) for line in manager.debug_log_path.read_text().splitlines()]
        assert records[0]["type"] == "user"
        assert records[0]["prompt"] == "hello"
        assert records[0]["messageCount"] == 1
        assert any("raw" in r for r in records)
        assert any(r.get("parsed", {}).get("type") == "assistant" for r in records)

    async def test_json_debug_events(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed_json(_assistant("Hi"))
        stdout.close()

        await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hello")
            await manager.wait_idle(timeout=1.0)

        debug = _of_type(events, JsonDebugEvent)
        assert [d.raw is not None for d in debug] == [True, False]
        assert debug[1].parsed["type"] == "assistant"

    async def test_duplicate_prompt_ignored(self, manager: SessionManager) -> None:
        proc, stdout = _make_mock_process()
        await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            assert await manager.send_prompt("one") is True
            assert await manager.send_prompt("two") is False
            assert mock_exec.call_count == 1
            assert manager.turn_count == 1
            stdout.close()
            await manager.wait_idle(timeout=1.0)

    async def test_session_id_changed(
        self, manager: SessionManager, events: list[SessionEvent], tmp_path: Path
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed_json(_init("agent-id"))
        stdout.feed_json(_assistant("Hi"))
        stdout.close()

        await manager.start(requested_id="mine")
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            await manager.send_prompt("hello")
            await manager.wait_idle(timeout=1.0)

        assert CONTINUE_FLAG in mock_exec.call_args.args
        changed = _of_type(events, SessionIdChangedEvent)
        assert len(changed) == 1
        assert (changed[0].old_id, changed[0].new_id) == ("mine", "agent-id")
        assert manager.session_id == "agent-id"
        debug_dir = tmp_path / ".claude-debug"
        assert manager.debug_log_path == debug_dir / "session-agent-id.json"
        assert (debug_dir / "session-mine.json").exists()
        assert (debug_dir / "session-agent-id.json").exists()

    async def test_spawn_failure(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        await manager.start()
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("claude")):
            await manager.send_prompt("hello")

        error = _of_type(events, ErrorEvent)[0]
        assert error.context == "spawn"
        assert "not found" in error.error
        assert isinstance(events[-1], ReadyEvent)
        assert manager.processing is False

    async def test_nonzero_exit_reports_stderr(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process(returncode=2, stderr=b"warming\nboom\n")
        stdout.close()
        await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hello")
            await manager.wait_idle(timeout=1.0)

        error = _of_type(events, ErrorEvent)[0]
        assert error.context == "subprocess"
        assert "code 2" in error.error
        assert "boom" in error.error
        assert isinstance(events[-1], ReadyEvent)

    async def test_agent_error_line_ends_turn_early(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed(b"Error: rate limited\n")
        await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hello")
            await _until(lambda: not manager.processing)

            error = _of_type(events, ErrorEvent)[0]
            assert error.context == "agent"
            assert manager.active_process is None

            stdout.close()
            await manager.wait_idle(timeout=1.0)

        assert isinstance(events[-1], ReadyEvent)

    async def test_draining_process_terminated_by_next_turn(
        self, manager: SessionManager
    ) -> None:
        proc, stdout = _make_mock_process()
        stdout.feed(b"Error: rate limited\n")
        proc2, stdout2 = _make_mock_process()
        stdout2.close()
        await manager.start()
        with patch("asyncio.create_subprocess_exec", side_effect=[proc, proc2]):
            await manager.send_prompt("one")
            await _until(lambda: not manager.processing)
            await manager.send_prompt("two")
            proc.terminate.assert_called_once()
            stdout.close()
            await manager.wait_idle(timeout=1.0)


# ------------------------------------------------------------------ #
# interrupt_current() / stop()
# ------------------------------------------------------------------ #


class TestInterrupt:
    async def test_noop_when_idle(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        await manager.interrupt_current()
        await manager.start()
        count = len(events)
        await manager.interrupt_current()
        assert len(events) == count

    async def test_interrupt_keeps_session(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process()
        session_id = await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("long task")
            await manager.interrupt_current()

            proc.terminate.assert_called_once()
            assert manager.processing is False
            assert manager.session_id == session_id
            assert manager.turn_count == 1
            assert isinstance(events[-2], ReadyEvent)
            assert isinstance(events[-1], ProcessStoppedEvent)
            assert events[-1].reason == "user_interrupted"

            count = len(events)
            stdout.feed_json(_assistant("late output"))
            stdout.close()
            await manager.wait_idle(timeout=1.0)

        assert not _of_type(events[count:], ChatMessageEvent)
        assert not _of_type(events[count:], ReadyEvent)

    async def test_interrupt_while_spawning(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, _stdout = _make_mock_process()
        proc.communicate = AsyncMock(return_value=(b"", b""))
        gate = asyncio.Event()

        async def slow_spawn(*args: Any, **kwargs: Any) -> MagicMock:
            await gate.wait()
            return proc

        await manager.start()
        with patch("asyncio.create_subprocess_exec", side_effect=slow_spawn) as mock_exec:
            send = asyncio.create_task(manager.send_prompt("long task"))
            await _until(lambda: mock_exec.call_count == 1)
            assert manager.processing is True

            await manager.interrupt_current()
            assert manager.processing is False
            assert isinstance(events[-2], ReadyEvent)
            assert isinstance(events[-1], ProcessStoppedEvent)
            count = len(events)

            gate.set()
            assert await send is True
            await _until(lambda: proc.communicate.await_count == 1)

        proc.terminate.assert_called_once()
        assert manager.active_process is None
        assert manager.processing is False
        assert manager.turn_count == 1
        assert events[count:] == []


class TestStop:
    async def test_stop_forgets_session(
        self, manager: SessionManager, events: list[SessionEvent]
    ) -> None:
        proc, stdout = _make_mock_process()
        await manager.start()
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await manager.send_prompt("hello")
            await manager.stop()
            stdout.close()
            await manager.wait_idle(timeout=1.0)

        proc.terminate.assert_called_once()
        assert manager.session_id is None
        assert manager.turn_count == 0
        assert manager.processing is False
        assert _of_type(events, SessionStoppedEvent)
        with pytest.raises(NoActiveSessionError):
            await manager.send_prompt("again")

    async def test_close_closes_channel(self, manager: SessionManager) -> None:
        await manager.start()
        await manager.close()
        assert manager.channel.closed is True

    async def test_status(self, manager: SessionManager, tmp_path: Path) -> None:
        assert manager.status().active is False
        await manager.start(requested_id="abc")
        status = manager.status()
        assert status.active is True
        assert status.session_id == "abc"
        assert status.continuity is ContinuityMode.RESUMING
        assert status.working_directory == tmp_path
