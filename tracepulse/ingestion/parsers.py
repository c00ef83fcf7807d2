"""Codex rollout transcript parsing.

A rollout file is JSONL. Each line names its kind in ``type`` (or ``kind``,
``event_type``, ``eventType``) and usually carries the interesting part in
``payload``:

- ``session_meta``: session header (id, cwd, originator, cli version, git)
- ``turn_context``: model in effect for the following turns
- ``response_item``: chat messages and tool calls/outputs
- ``event_msg`` with payload type ``token_count``: token usage of one model call

Everything else is ignored.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tracepulse.ingestion.discovery import session_id_from_filename
from tracepulse.ingestion.ids import fallback_session_id, record_id
from tracepulse.ingestion.jsonl import JsonlLine, JsonlReadResult
from tracepulse.lib.json import JSONDecodeError, loads
from tracepulse.lib.timestamps import parse_timestamp_ms
from tracepulse.storage.store import (
    MessageRecord,
    ModelCallRecord,
    ParsedTranscript,
    SessionRecord,
    ToolCallRecord,
)

TOOL_CALL_TYPES = {"function_call", "custom_tool_call", "local_shell_call"}
TOOL_OUTPUT_TYPES = {"function_call_output", "custom_tool_call_output"}

# Tool output text kept on failed calls.
ERROR_TEXT_LIMIT = 500

_EXIT_CODE_RE = re.compile(r"(?:Exit code|exit_code)[:=]\s*(-?\d+)", re.IGNORECASE)
_WALL_TIME_RE = re.compile(r"Wall time:\s*([\d.]+)\s*seconds", re.IGNORECASE)

_OK_STATUSES = {"ok", "success", "succeeded", "complete", "completed", "done", "finished", "exit"}
_FAILED_STATUSES = {"fail", "failed", "failure", "error", "errored", "incomplete"}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def coerce_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def coerce_number(value: Any, fallback: float = 0) -> float:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return fallback
        if math.isfinite(parsed):
            return parsed
    return fallback


def first_present(obj: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def get_line_type(obj: dict[str, Any]) -> str | None:
    raw = (
        coerce_string(obj.get("type"))
        or coerce_string(obj.get("kind"))
        or coerce_string(obj.get("event_type"))
        or coerce_string(obj.get("eventType"))
    )
    return raw.lower() if raw else None


def get_timestamp(obj: dict[str, Any]) -> int | None:
    return parse_timestamp_ms(first_present(obj, "ts", "timestamp", "time", "created_at", "createdAt"))


def get_session_id(obj: dict[str, Any]) -> str | None:
    session = obj.get("session")
    nested = None
    if isinstance(session, dict):
        nested = first_present(session, "id", "session_id")
    candidate = first_present(obj, "session_id", "sessionId")
    if candidate is None:
        candidate = nested if nested is not None else obj.get("id")
    return coerce_string(candidate)


def _payload(obj: dict[str, Any]) -> dict[str, Any]:
    for candidate in (obj.get("payload"), obj.get("item")):
        if isinstance(candidate, dict):
            return candidate
    for wrapper in (obj.get("event"), obj.get("message")):
        if isinstance(wrapper, dict) and isinstance(wrapper.get("payload"), dict):
            return wrapper["payload"]
    return obj


def _payload_type(payload: dict[str, Any]) -> str | None:
    raw = (
        coerce_string(payload.get("type"))
        or coerce_string(payload.get("event_type"))
        or coerce_string(payload.get("kind"))
    )
    return raw.lower() if raw else None


def as_int(value: Any) -> int | None:
    number = coerce_number(value, math.nan)
    return None if math.isnan(number) else int(number)


# ---------------------------------------------------------------------------
# Per-line parsers
# ---------------------------------------------------------------------------


@dataclass
class ParseContext:
    """Mutable state threaded through one transcript's lines."""

    path: str
    session_id: str
    fallback_ts: int
    store_content: bool = False
    model: str | None = None
    model_provider: str | None = None

    def timestamp(self, *sources: dict[str, Any]) -> int:
        for source in sources:
            ts = get_timestamp(source)
            if ts is not None:
                return ts
        return self.fallback_ts


def parse_session_meta(line: JsonlLine, ctx: ParseContext) -> SessionRecord | None:
    obj = line.data
    line_type = get_line_type(obj)
    if not line_type or "session_meta" not in line_type:
        return None

    meta: dict[str, Any] = obj
    for key in ("session_meta", "meta", "session", "payload"):
        if isinstance(obj.get(key), dict):
            meta = obj[key]
            break

    git = meta.get("git") if isinstance(meta.get("git"), dict) else {}
    session_id = get_session_id(meta) or get_session_id(obj) or ctx.session_id
    model_provider = coerce_string(first_present(meta, "model_provider", "modelProvider", "provider"))
    if model_provider:
        ctx.model_provider = model_provider

    return SessionRecord(
        id=session_id,
        ts=ctx.timestamp(meta, obj),
        cwd=coerce_string(first_present(meta, "cwd", "working_dir", "workingDirectory", "project", "repo")),
        originator=coerce_string(first_present(meta, "originator", "user", "actor", "owner")),
        cli_version=coerce_string(
            first_present(meta, "cli_version", "cliVersion", "version", "client_version", "clientVersion")
        ),
        model_provider=model_provider,
        model=coerce_string(meta.get("model")),
        git_branch=coerce_string(first_present(meta, "git_branch", "gitBranch") or git.get("branch")),
        git_commit=coerce_string(
            first_present(meta, "git_commit", "gitCommit")
            or first_present(git, "commit_hash", "commit", "sha")
        ),
        git_remote=coerce_string(
            first_present(meta, "git_remote", "gitRemote", "repository_url")
            or first_present(git, "repository_url", "remote_url", "url")
        ),
        source_file=ctx.path,
        source_line=line.number,
    )


def parse_turn_context(line: JsonlLine, ctx: ParseContext) -> bool:
    """Pick up the model in effect from a ``turn_context`` line."""
    obj = line.data
    line_type = get_line_type(obj)
    if not line_type or "turn_context" not in line_type:
        return False
    payload = _payload(obj)
    model = coerce_string(payload.get("model"))
    if model:
        ctx.model = model
    provider = coerce_string(first_present(payload, "model_provider", "modelProvider"))
    if provider:
        ctx.model_provider = provider
    return True


def extract_content(value: Any) -> str | None:
    """Flatten message content (string, segment list or text object) to text."""
    if isinstance(value, str):
        return value

    def _text_of(entry: dict[str, Any]) -> str | None:
        text = entry.get("text")
        if isinstance(text, str):
            return text
        if isinstance(text, dict) and isinstance(text.get("value"), str):
            return text["value"]
        return None

    if isinstance(value, list):
        parts: list[str] = []
        for entry in value:
            if isinstance(entry, str):
                parts.append(entry)
            elif isinstance(entry, dict):
                text = _text_of(entry)
                if text is None and isinstance(entry.get("content"), str):
                    text = entry["content"]
                if text is not None:
                    parts.append(text)
        return " ".join(parts) if parts else None

    if isinstance(value, dict):
        return _text_of(value)
    return None


def _normalize_role(role: str | None) -> str | None:
    if not role:
        return None
    lowered = role.lower()
    return lowered if lowered in {"user", "assistant", "system"} else None


def parse_message(line: JsonlLine, ctx: ParseContext) -> MessageRecord | None:
    obj = line.data
    line_type = get_line_type(obj)
    if not line_type or "response_item" not in line_type:
        return None
    item = _payload(obj)
    role = _normalize_role(coerce_string(item.get("role") or obj.get("role")))
    if role is None:
        return None

    ts = ctx.timestamp(item, obj)
    content = extract_content(item.get("content", obj.get("content"))) if ctx.store_content else None
    return MessageRecord(
        id=record_id(ctx.session_id, line.number, {"kind": "message", "role": role, "ts": ts}),
        session_id=ctx.session_id,
        role=role,
        ts=ts,
        content=content,
        source_file=ctx.path,
        source_line=line.number,
    )


def _read_token_value(sources: list[dict[str, Any]], keys: tuple[str, ...]) -> int:
    for source in sources:
        for key in keys:
            if key in source:
                return int(coerce_number(source[key], 0))
    return 0


def parse_token_count(line: JsonlLine, ctx: ParseContext) -> ModelCallRecord | None:
    obj = line.data
    line_type = get_line_type(obj)
    if not line_type or "event_msg" not in line_type:
        return None
    payload = _payload(obj)
    payload_type = _payload_type(payload)
    if not payload_type or "token_count" not in payload_type:
        return None

    info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
    sources = [
        source
        for source in (info.get("last_token_usage"), info.get("total_token_usage"), payload.get("usage"))
        if isinstance(source, dict)
    ]
    # Codex emits rate-limit-only token_count events with no usage attached.
    if not sources:
        return None

    input_tokens = _read_token_value(sources, ("input_tokens", "input", "prompt_tokens"))
    cached_input_tokens = _read_token_value(
        sources, ("cached_input_tokens", "cached_input", "cache_read_tokens", "cached_prompt_tokens")
    )
    output_tokens = _read_token_value(sources, ("output_tokens", "output", "completion_tokens"))
    reasoning_tokens = _read_token_value(
        sources, ("reasoning_output_tokens", "reasoning_tokens", "reasoning")
    )
    total_tokens = _read_token_value(sources, ("total_tokens", "total", "tokens"))
    computed_total = input_tokens + output_tokens + reasoning_tokens
    if total_tokens == 0 and computed_total > 0:
        total_tokens = computed_total

    duration = coerce_number(first_present(payload, "duration_ms") or obj.get("duration_ms"), 0)
    model = coerce_string(payload.get("model") or obj.get("model") or obj.get("model_name")) or ctx.model
    ts = ctx.timestamp(payload, obj)

    return ModelCallRecord(
        id=record_id(
            ctx.session_id,
            line.number,
            {
                "kind": "model_call",
                "ts": ts,
                "model": model,
                "input_tokens": input_tokens,
                "cached_input_tokens": cached_input_tokens,
                "output_tokens": output_tokens,
                "reasoning_tokens": reasoning_tokens,
                "total_tokens": total_tokens,
            },
        ),
        session_id=ctx.session_id,
        ts=ts,
        model=model,
        input_tokens=input_tokens,
        cached_input_tokens=cached_input_tokens,
        output_tokens=output_tokens,
        reasoning_tokens=reasoning_tokens,
        total_tokens=total_tokens,
        duration_ms=int(duration) if duration > 0 else None,
        source_file=ctx.path,
        source_line=line.number,
    )


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


def _status_from_text(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower()
    if lowered in _OK_STATUSES:
        return "ok"
    if lowered in _FAILED_STATUSES:
        return "failed"
    return None


def _parse_arguments(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            parsed = loads(value)
        except JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def command_of(args: dict[str, Any]) -> str | None:
    command = first_present(args, "command", "cmd")
    if isinstance(command, list):
        parts = [str(part) for part in command]
        return " ".join(parts) if parts else None
    return coerce_string(command)


def _parse_tool_output(value: Any) -> tuple[str | None, int | None, int | None]:
    """Return (text, exit_code, duration_ms) from a tool output payload."""
    parsed: Any = value
    if isinstance(value, str):
        try:
            parsed = loads(value)
        except JSONDecodeError:
            parsed = value

    if isinstance(parsed, dict):
        metadata = parsed.get("metadata") if isinstance(parsed.get("metadata"), dict) else {}
        exit_code = as_int(first_present(metadata, "exit_code", "exitCode"))
        seconds = coerce_number(metadata.get("duration_seconds"), math.nan)
        duration_ms = None if math.isnan(seconds) else int(seconds * 1000)
        text = parsed.get("output")
        return (text if isinstance(text, str) else None), exit_code, duration_ms

    text = parsed if isinstance(parsed, str) else None
    if text is None:
        return None, None, None
    exit_match = _EXIT_CODE_RE.search(text)
    wall_match = _WALL_TIME_RE.search(text)
    return (
        text,
        int(exit_match.group(1)) if exit_match else None,
        int(float(wall_match.group(1)) * 1000) if wall_match else None,
    )


@dataclass
class _PendingToolCall:
    record: ToolCallRecord
    call_id: str | None


@dataclass
class ToolCallTracker:
    """Pairs tool-call starts with their outputs by ``call_id``."""

    calls: list[_PendingToolCall] = field(default_factory=list)
    by_call_id: dict[str, _PendingToolCall] = field(default_factory=dict)

    def feed(self, line: JsonlLine, ctx: ParseContext) -> bool:
        obj = line.data
        line_type = get_line_type(obj)
        if not line_type or "response_item" not in line_type:
            return False
        payload = _payload(obj)
        payload_type = _payload_type(payload)
        if payload_type in TOOL_CALL_TYPES:
            self._start(line, payload, payload_type, ctx)
            return True
        if payload_type in TOOL_OUTPUT_TYPES:
            self._finish(line, payload, ctx)
            return True
        return False

    def _start(self, line: JsonlLine, payload: dict[str, Any], payload_type: str, ctx: ParseContext) -> None:
        call_id = coerce_string(first_present(payload, "call_id", "callId", "id"))
        if payload_type == "local_shell_call":
            args = payload.get("action") if isinstance(payload.get("action"), dict) else {}
            tool_name = "local_shell"
        else:
            args = _parse_arguments(payload.get("arguments"))
            tool_name = coerce_string(payload.get("name")) or "tool"

        start_ts = ctx.timestamp(payload, line.data)
        record = ToolCallRecord(
            id=record_id(
                ctx.session_id,
                line.number,
                {"kind": "tool_call", "call_id": call_id, "tool_name": tool_name},
            ),
            session_id=ctx.session_id,
            call_id=call_id,
            tool_name=tool_name,
            command=command_of(args),
            status=_status_from_text(coerce_string(payload.get("status"))) or "unknown",
            start_ts=start_ts,
            source_file=ctx.path,
            source_line=line.number,
        )
        pending = _PendingToolCall(record=record, call_id=call_id)
        self.calls.append(pending)
        if call_id:
            self.by_call_id[call_id] = pending

    def _finish(self, line: JsonlLine, payload: dict[str, Any], ctx: ParseContext) -> None:
        call_id = coerce_string(first_present(payload, "call_id", "callId"))
        pending = self.by_call_id.get(call_id) if call_id else None
        if pending is None:
            return

        text, exit_code, duration_ms = _parse_tool_output(payload.get("output"))
        end_ts = ctx.timestamp(payload, line.data)
        if duration_ms is None:
            duration_ms = max(end_ts - pending.record.start_ts, 0)

        if exit_code is not None:
            status = "ok" if exit_code == 0 else "failed"
        elif pending.record.status != "unknown":
            status = pending.record.status
        else:
            status = "ok"

        error = None
        if status == "failed" and text:
            error = text[:ERROR_TEXT_LIMIT]

        pending.record = pending.record.model_copy(
            update={
                "status": status,
                "end_ts": end_ts,
                "duration_ms": duration_ms,
                "exit_code": exit_code,
                "error": error,
            }
        )

    def records(self) -> list[ToolCallRecord]:
        return [pending.record for pending in self.calls]


# ---------------------------------------------------------------------------
# Whole transcript
# ---------------------------------------------------------------------------


def resolve_session_id(lines: list[JsonlLine], path: Path) -> str:
    """Session id from the header, else the file name's UUID, else the first line."""
    for line in lines:
        line_type = get_line_type(line.data)
        if line_type and "session_meta" in line_type:
            payload = _payload(line.data)
            session_id = get_session_id(payload) or get_session_id(line.data)
            if session_id:
                return session_id
    from_name = session_id_from_filename(path)
    if from_name:
        return from_name
    first = lines[0].raw if lines else path.name.encode("utf-8")
    return fallback_session_id(first)


def parse_transcript(
    result: JsonlReadResult,
    *,
    path: Path,
    fallback_ts: int,
    store_content: bool = False,
) -> ParsedTranscript:
    """Turn decoded transcript lines into records."""
    session_id = resolve_session_id(result.lines, path)
    ctx = ParseContext(
        path=str(path),
        session_id=session_id,
        fallback_ts=fallback_ts,
        store_content=store_content,
    )
    sessions: dict[str, SessionRecord] = {}
    messages: list[MessageRecord] = []
    model_calls: list[ModelCallRecord] = []
    tools = ToolCallTracker()

    for line in result.lines:
        session = parse_session_meta(line, ctx)
        if session is not None:
            sessions.setdefault(session.id, session)
            continue
        if parse_turn_context(line, ctx):
            continue
        if tools.feed(line, ctx):
            continue
        message = parse_message(line, ctx)
        if message is not None:
            messages.append(message)
            continue
        call = parse_token_count(line, ctx)
        if call is not None:
            model_calls.append(call)

    if result.lines and session_id not in sessions:
        first = result.lines[0]
        sessions[session_id] = SessionRecord(
            id=session_id,
            ts=ctx.timestamp(_payload(first.data), first.data),
            source_file=ctx.path,
            source_line=first.number,
        )

    header = sessions.get(session_id)
    if header is not None:
        sessions[session_id] = header.model_copy(
            update={
                "model": header.model or ctx.model,
                "model_provider": header.model_provider or ctx.model_provider,
            }
        )

    return ParsedTranscript(
        session_id=session_id,
        source_file=ctx.path,
        sessions=list(sessions.values()),
        messages=messages,
        model_calls=model_calls,
        tool_calls=tools.records(),
        skipped_partial_line=result.skipped_partial_line,
    )


__all__ = [
    "ParseContext",
    "ToolCallTracker",
    "as_int",
    "coerce_number",
    "coerce_string",
    "command_of",
    "extract_content",
    "first_present",
    "get_line_type",
    "get_session_id",
    "get_timestamp",
    "parse_message",
    "parse_session_meta",
    "parse_token_count",
    "parse_transcript",
    "parse_turn_context",
    "resolve_session_id",
]
