"""Smoke tests for the tether CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from tether import __version__
from tether.cli import cli
from tether.errors import ShadowTimeoutError


def test_help() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Tether" in result.output
    for command in ("chat", "history", "summarize"):
        assert command in result.output


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert f"tether, version {__version__}" in result.output


def test_chat_flags() -> None:
    result = CliRunner().invoke(cli, ["chat", "--help"])
    assert result.exit_code == 0
    assert "--session-id" in result.output
    assert "--new" in result.output
    assert "--prompt" in result.output


def test_chat_missing_config_errors() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["chat", "-c", "nope.yaml"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


def test_history_empty() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["history"])
        assert result.exit_code == 0
        assert "No sessions found" in result.output


def test_history_transcript() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        debug_dir = Path(".claude-debug")
        debug_dir.mkdir()
        records = [
            {"timestamp": "2026-01-01T00:00:00.000Z", "type": "user", "prompt": "hello"},
            {
                "timestamp": "2026-01-01T00:00:01.000Z",
                "parsed": {
                    "type": "assistant",
                    "message": {"content": [{"type": "text", "text": "Hi!"}]},
                },
            },
        ]
        (debug_dir / "session-abc.json").write_text(
            "\n".join(json.dumps(r) for r in records) + "\n"
        )

        listing = runner.invoke(cli, ["history"])
        assert listing.exit_code == 0
        assert "abc" in listing.output
        assert "> hello" in listing.output

        transcript = runner.invoke(cli, ["history", "abc"])
        assert transcript.exit_code == 0
        assert "> hello" in transcript.output
        assert "Hi!" in transcript.output


def test_history_unknown_session() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["history", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.output


def test_summarize_needs_a_source() -> None:
    result = CliRunner().invoke(cli, ["summarize"])
    assert result.exit_code == 2


def test_summarize_file() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        Path("notes.txt").write_text("User: fix the bug\n\nAssistant: fixed")
        with patch(
            "tether.commands.summarize.ShadowTaskRunner.summarize",
            new=AsyncMock(return_value="A bug was fixed."),
        ) as mock_summarize:
            result = runner.invoke(cli, ["summarize", "notes.txt"])
        assert result.exit_code == 0
        assert "A bug was fixed." in result.output
        mock_summarize.assert_awaited_once()


def test_summarize_failure_reported() -> None:
    runner = CliRunner()
    with runner.isolated_filesystem():
        Path("notes.txt").write_text("something")
        with patch(
            "tether.commands.summarize.ShadowTaskRunner.summarize",
            new=AsyncMock(side_effect=ShadowTimeoutError("Shadow task timed out after 60s")),
        ):
            result = runner.invoke(cli, ["summarize", "notes.txt"])
        assert result.exit_code == 1
        assert "timed out" in result.output
