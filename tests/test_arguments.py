"""Tests for the per-turn continuity flag strategy."""

from __future__ import annotations

import pytest

from tether.agent.arguments import (
    BASE_FLAGS,
    CONTINUE_FLAG,
    SESSION_ID_FLAG,
    ContinuityMode,
    build_args,
    continuity_flags,
    shadow_args,
)


class TestContinuityFlags:
    def test_first_turn_of_new_session_creates_it(self) -> None:
        assert continuity_flags(1, ContinuityMode.NEW, "abc") == [SESSION_ID_FLAG, "abc"]

    def test_first_turn_of_resumed_session_continues(self) -> None:
        assert continuity_flags(1, ContinuityMode.RESUMING, "abc") == [CONTINUE_FLAG]

    @pytest.mark.parametrize("turn", [2, 5])
    @pytest.mark.parametrize("mode", [ContinuityMode.NEW, ContinuityMode.RESUMING])
    def test_later_turns_always_continue(self, turn: int, mode: ContinuityMode) -> None:
        assert continuity_flags(turn, mode, "abc") == [CONTINUE_FLAG]

    def test_new_session_without_id_gets_no_flag(self) -> None:
        assert continuity_flags(1, ContinuityMode.NEW, None) == []

    def test_turn_zero_rejected(self) -> None:
        with pytest.raises(ValueError, match="start at 1"):
            continuity_flags(0, ContinuityMode.NEW, "abc")


class TestBuildArgs:
    def test_layout(self) -> None:
        args = build_args("hello", 1, ContinuityMode.NEW, "abc")
        assert args == ["claude", *BASE_FLAGS, SESSION_ID_FLAG, "abc", "hello"]

    def test_prompt_is_last_and_extra_args_precede_flags(self) -> None:
        args = build_args(
            "do it",
            3,
            ContinuityMode.RESUMING,
            "abc",
            command="/opt/claude",
            extra_args=["--model", "opus"],
        )
        assert args[0] == "/opt/claude"
        assert args[-1] == "do it"
        assert args[-2] == CONTINUE_FLAG
        assert args.index("--model") < args.index(CONTINUE_FLAG)

    def test_stream_json_output_requested(self) -> None:
        args = build_args("x", 1, ContinuityMode.NEW, "abc")
        assert args[args.index("--output-format") + 1] == "stream-json"
        assert "--print" in args


class TestShadowArgs:
    def test_no_session_flags(self) -> None:
        args = shadow_args("summarize")
        assert SESSION_ID_FLAG not in args
        assert CONTINUE_FLAG not in args
        assert args == ["claude", *BASE_FLAGS, "summarize"]
