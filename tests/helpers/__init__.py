"""Test helper utilities."""

from __future__ import annotations

from .cli_helpers import invoke_command, json_output
from .transcripts import (
    BASE_MS,
    SESSION_ID,
    build_session,
    function_call_line,
    function_call_output_line,
    iso,
    message_line,
    rate_limit_line,
    rollout_path,
    session_meta_line,
    token_count_line,
    turn_context_line,
    write_transcript,
)


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


__all__ = [
    "BASE_MS",
    "FakeClock",
    "SESSION_ID",
    "build_session",
    "function_call_line",
    "function_call_output_line",
    "invoke_command",
    "iso",
    "json_output",
    "message_line",
    "rate_limit_line",
    "rollout_path",
    "session_meta_line",
    "token_count_line",
    "turn_context_line",
    "write_transcript",
]
