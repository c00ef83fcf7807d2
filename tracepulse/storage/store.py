"""Record models written by the transcript upserter and read by the dashboard."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

MessageRole = Literal["user", "assistant", "system"]
ToolCallStatus = Literal["ok", "failed", "unknown"]


class FileSignature(BaseModel):
    """Cheap change fingerprint for a transcript file."""

    mtime_ns: int
    size_bytes: int
    content_hash: str | None = None

    model_config = ConfigDict(frozen=True)


class FileIngestState(BaseModel):
    path: str
    signature: FileSignature | None = None
    last_ingested_at: int | None = None
    last_error: str | None = None
    updated_at: int


class _Record(BaseModel):
    id: str
    source_file: str
    source_line: int

    @field_validator("id")
    @classmethod
    def non_empty_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Record id cannot be empty")
        return v


class SessionRecord(_Record):
    ts: int
    cwd: str | None = None
    originator: str | None = None
    cli_version: str | None = None
    model_provider: str | None = None
    model: str | None = None
    git_branch: str | None = None
    git_commit: str | None = None
    git_remote: str | None = None
    project_id: str | None = None


class MessageRecord(_Record):
    session_id: str
    role: MessageRole
    ts: int
    content: str | None = None


class ModelCallRecord(_Record):
    session_id: str
    ts: int
    model: str | None = None
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int = 0
    duration_ms: int | None = None


class ToolCallRecord(_Record):
    # None for calls recovered from the TUI log.
    session_id: str | None = None
    call_id: str | None = None
    tool_name: str
    command: str | None = None
    status: ToolCallStatus = "unknown"
    start_ts: int
    end_ts: int | None = None
    duration_ms: int | None = None
    exit_code: int | None = None
    error: str | None = None


class ProjectRecord(BaseModel):
    """A working tree sessions ran in, keyed by name and root path."""

    id: str
    name: str
    root_path: str | None = None
    git_remote: str | None = None
    first_seen_ts: int
    last_seen_ts: int


class ParsedTranscript(BaseModel):
    """Everything extracted from one transcript file."""

    session_id: str
    source_file: str | None = None
    sessions: list[SessionRecord] = []
    messages: list[MessageRecord] = []
    model_calls: list[ModelCallRecord] = []
    tool_calls: list[ToolCallRecord] = []
    projects: list[ProjectRecord] = []
    skipped_partial_line: bool = False

    def counts(self) -> dict[str, int]:
        return {
            "sessions": len(self.sessions),
            "messages": len(self.messages),
            "model_calls": len(self.model_calls),
            "tool_calls": len(self.tool_calls),
        }


__all__ = [
    "FileIngestState",
    "FileSignature",
    "MessageRecord",
    "MessageRole",
    "ModelCallRecord",
    "ParsedTranscript",
    "ProjectRecord",
    "SessionRecord",
    "ToolCallRecord",
    "ToolCallStatus",
]
