"""Tool calls recovered from the Codex TUI log (``codex-tui.log``).

The log is free-form text with a timestamp on every entry. Three kinds of
entries are recognized:

- ``ToolCall: <name> <args>``: a start, exit or failure, depending on a
  status field, the wording of the line, or the presence of an exit code,
  error or duration.
- ``FunctionCall: <name> <args>``: always a start.
- ``BackgroundEvent: ...`` mentioning a failure or an error: a failed end.

Arguments are a JSON object (possibly continued on the following lines) or
``key=value`` pairs. Starts and ends are then paired by signature, tool name
and distance in time; whatever stays unpaired is still recorded.

Records from the log belong to no session.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from tracepulse.ingestion.ids import record_id
from tracepulse.ingestion.parsers import as_int, coerce_string, command_of, first_present
from tracepulse.lib.json import JSONDecodeError, loads
from tracepulse.lib.timestamps import parse_timestamp_ms
from tracepulse.storage.store import ToolCallRecord, ToolCallStatus

# Stands in for a session id when hashing record ids.
LOG_ID_SCOPE = "tui-log"

START_DEDUP_WINDOW_MS = 1_000
MATCH_WINDOW_MS = 5 * 60 * 1_000
MAX_CONTINUATION_LINES = 20
SIGNATURE_COMMAND_LIMIT = 200

_ANSI_OSC_RE = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")
_ANSI_CSI_RE = re.compile(r"[\x1b\x9b][\[\]()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nq-uy=><]")
_ANSI_ESC_RE = re.compile(r"\x1b[@-Z\\-_]")

_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:?\d{2})?")
_ENTRY_START_RE = re.compile(r"^\s*\d{4}-\d{2}-\d{2}[ T]")

_TOOL_CALL_RE = re.compile(r"\bToolCall:\s*([A-Za-z0-9_.:-]+)")
_FUNCTION_CALL_RE = re.compile(r"\bFunctionCall:\s*([A-Za-z0-9_.:-]+)")
_BACKGROUND_EVENT_RE = re.compile(r"\bBackgroundEvent:")

_ARGS_PREFIX_RE = re.compile(r"^[:\-\s]+")
_ARGS_LABEL_RE = re.compile(r"^args?=\s*", re.IGNORECASE)
_KEY_VALUE_RE = re.compile(r"""(\w+)=("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|\S+)""")

_EXIT_CODE_RE = re.compile(r"exit\s*code\s*=?\s*(-?\d+)", re.IGNORECASE)
_CODE_RE = re.compile(r"code\s*=?\s*(-?\d+)", re.IGNORECASE)
_ERROR_RE = re.compile(r"(?:Execution failed:|Error:|Failed:)(.*)$", re.IGNORECASE)
_TOOL_NAME_RE = re.compile(r"tool\s*=?\s*([A-Za-z0-9_.:-]+)", re.IGNORECASE)
_COMMAND_RE = re.compile(r"""command\s*=?\s*("[^"]+"|'[^']+'|[^,]+)$""", re.IGNORECASE)

_START_WORDS = {"start", "started", "starting", "running", "pending"}
_EXIT_WORDS = {"ok", "success", "succeeded", "complete", "completed", "done", "finished", "exit"}
_FAILURE_WORDS = {"fail", "failed", "failure", "error", "errored"}

EventKind = Literal["start", "exit", "failure"]


@dataclass
class LogEvent:
    """One recognized log entry, before starts and ends are paired."""

    kind: EventKind
    ts: int
    line: int
    signature: str
    tool_name: str | None
    command: str | None = None
    exit_code: int | None = None
    duration_ms: int | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def strip_ansi(text: str) -> str:
    if not text:
        return text
    return _ANSI_ESC_RE.sub("", _ANSI_CSI_RE.sub("", _ANSI_OSC_RE.sub("", text)))


def parse_log_timestamp(line: str) -> int | None:
    """Epoch ms of the first timestamp in ``line``; naive times are UTC."""
    match = _TIMESTAMP_RE.search(line)
    if match is None:
        return None
    date, clock, fraction, offset = match.groups()
    text = f"{date}T{clock}"
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    if offset:
        text += "+00:00" if offset == "Z" else f"{offset[:3]}:{offset[-2:]}"
    return parse_timestamp_ms(text)


def normalize_command(value: str) -> str:
    return " ".join(value.split())[:SIGNATURE_COMMAND_LIMIT]


def build_signature(tool_name: str | None, command: str | None, fallback: str | None) -> str:
    normalized = normalize_command(command or fallback or "")
    if tool_name is None:
        return normalized
    return f"{tool_name}|{normalized}" if normalized else tool_name


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _is_json(text: str) -> bool:
    try:
        loads(text)
    except JSONDecodeError:
        return False
    return True


def _collect_args(lines: list[str], index: int, remainder: str) -> tuple[str | None, int]:
    """Arguments following a call marker, and how many extra lines they used."""
    text = _ARGS_LABEL_RE.sub("", _ARGS_PREFIX_RE.sub("", remainder.strip())).strip()
    consumed = 0
    if not text and index + 1 < len(lines):
        following = lines[index + 1].strip()
        if following.startswith(("{", "[")):
            text, consumed = following, 1
    if not text:
        return None, 0

    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()

    if text.startswith(("{", "[")):
        cursor = index + consumed + 1
        while cursor < len(lines) and consumed <= MAX_CONTINUATION_LINES and not _is_json(text):
            if _ENTRY_START_RE.match(lines[cursor]):
                break
            text += "\n" + lines[cursor]
            consumed += 1
            cursor += 1
    return text, consumed


def _parse_args(text: str | None) -> tuple[dict[str, Any], str | None]:
    if not text:
        return {}, None
    trimmed = text.strip()
    if (trimmed[:1], trimmed[-1:]) in {("{", "}"), ("[", "]")} and _is_json(trimmed):
        parsed = loads(trimmed)
        if isinstance(parsed, dict):
            return parsed, command_of(parsed)
        return {}, None
    args = {match.group(1): _unquote(match.group(2)) for match in _KEY_VALUE_RE.finditer(trimmed)}
    return args, command_of(args)


def _kind_from_status(value: str | None) -> EventKind | None:
    lowered = (value or "").lower()
    if lowered in _START_WORDS:
        return "start"
    if lowered in _EXIT_WORDS:
        return "exit"
    if lowered in _FAILURE_WORDS:
        return "failure"
    return None


def _kind_from_wording(line: str) -> EventKind | None:
    lowered = line.lower()
    if "failed" in lowered or "error" in lowered:
        return "failure"
    if "completed" in lowered or "finished" in lowered or "success" in lowered:
        return "exit"
    if "started" in lowered or "running" in lowered or "pending" in lowered:
        return "start"
    return None


# ---------------------------------------------------------------------------
# Entry parsers
# ---------------------------------------------------------------------------


def parse_tool_call(lines: list[str], index: int, ts: int, line_number: int) -> tuple[LogEvent, int] | None:
    line = lines[index]
    match = _TOOL_CALL_RE.search(line)
    if match is None:
        return None
    tool_name = match.group(1)
    args_text, consumed = _collect_args(lines, index, line[match.end():])
    args, command = _parse_args(args_text)

    exit_code = as_int(first_present(args, "exit_code", "exitCode", "code"))
    duration_ms = as_int(first_present(args, "duration_ms", "durationMs", "duration"))
    error = coerce_string(first_present(args, "error", "err", "message"))
    status = coerce_string(first_present(args, "status", "state", "event", "phase"))

    kind = _kind_from_status(status) or _kind_from_wording(line)
    if kind is None:
        if exit_code is not None:
            kind = "exit" if exit_code == 0 else "failure"
        elif error:
            kind = "failure"
        elif duration_ms is not None:
            kind = "exit"
        else:
            kind = "start"

    event = LogEvent(
        kind=kind,
        ts=ts,
        line=line_number,
        signature=build_signature(tool_name, command, args_text),
        tool_name=tool_name,
        command=command,
        exit_code=exit_code,
        duration_ms=duration_ms,
        error=error,
    )
    return event, consumed


def parse_function_call(lines: list[str], index: int, ts: int, line_number: int) -> tuple[LogEvent, int] | None:
    line = lines[index]
    match = _FUNCTION_CALL_RE.search(line)
    if match is None:
        return None
    tool_name = match.group(1)
    args_text, consumed = _collect_args(lines, index, line[match.end():])
    _, command = _parse_args(args_text)
    event = LogEvent(
        kind="start",
        ts=ts,
        line=line_number,
        signature=build_signature(tool_name, command, args_text),
        tool_name=tool_name,
        command=command,
    )
    return event, consumed


def parse_background_event(line: str, ts: int, line_number: int) -> LogEvent | None:
    if not _BACKGROUND_EVENT_RE.search(line):
        return None
    lowered = line.lower()
    if "failed" not in lowered and "error" not in lowered:
        return None

    code = _EXIT_CODE_RE.search(line) or _CODE_RE.search(line)
    error = _ERROR_RE.search(line)
    tool = _TOOL_NAME_RE.search(line)
    command_match = _COMMAND_RE.search(line)
    tool_name = tool.group(1) if tool else None
    command = _unquote(command_match.group(1).strip()) if command_match else None
    return LogEvent(
        kind="failure",
        ts=ts,
        line=line_number,
        signature=build_signature(tool_name, command, line),
        tool_name=tool_name,
        command=command,
        exit_code=int(code.group(1)) if code else None,
        error=(error.group(1).strip() or None) if error else None,
    )


def scan_events(lines: list[str]) -> list[LogEvent]:
    """Recognized entries in line order; continuation lines are consumed."""
    events: list[LogEvent] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        ts = parse_log_timestamp(line) if line.strip() else None
        if ts is None:
            index += 1
            continue
        line_number = index + 1

        parsed = parse_tool_call(lines, index, ts, line_number)
        if parsed is None:
            parsed = parse_function_call(lines, index, ts, line_number)
        if parsed is not None:
            event, consumed = parsed
            events.append(event)
            index += consumed + 1
            continue

        background = parse_background_event(line, ts, line_number)
        if background is not None:
            events.append(background)
        index += 1
    return events


# ---------------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------------


def _best_start(pending: list[LogEvent], end: LogEvent) -> int | None:
    """Index of the start an end belongs to.

    Signature agreement outweighs tool-name agreement; ties go to the start
    nearest in time. Starts further than the match window are ignored.
    """
    best: int | None = None
    best_score = -1
    best_delta = math.inf
    for index, start in enumerate(pending):
        delta = abs(end.ts - start.ts)
        if delta > MATCH_WINDOW_MS:
            continue
        score = 2 if start.signature == end.signature else 0
        if end.tool_name and start.tool_name == end.tool_name:
            score += 1
        if score > best_score or (score == best_score and delta < best_delta):
            best, best_score, best_delta = index, score, delta
    return best


def pair_events(events: list[LogEvent]) -> list[tuple[LogEvent | None, LogEvent | None]]:
    pending: list[LogEvent] = []
    pairs: list[tuple[LogEvent | None, LogEvent | None]] = []
    for event in sorted(events, key=lambda item: item.ts):
        if event.kind == "start":
            duplicate = any(
                start.signature == event.signature and abs(start.ts - event.ts) <= START_DEDUP_WINDOW_MS
                for start in pending
            )
            if not duplicate:
                pending.append(event)
            continue
        match = _best_start(pending, event)
        pairs.append((None if match is None else pending.pop(match), event))
    pairs.extend((start, None) for start in pending)
    return pairs


def _status(end: LogEvent | None) -> ToolCallStatus:
    if end is None:
        return "unknown"
    if end.kind == "failure":
        return "failed"
    if end.exit_code not in (None, 0):
        return "failed"
    return "ok"


def build_record(start: LogEvent | None, end: LogEvent | None, path: str) -> ToolCallRecord:
    anchor = start or end
    if anchor is None:
        raise ValueError("A tool call needs a start or an end")

    if start is not None:
        start_ts = start.ts
    elif end is not None and end.duration_ms is not None:
        start_ts = end.ts - end.duration_ms
    else:
        start_ts = anchor.ts
    end_ts = end.ts if end is not None else None

    duration_ms = end.duration_ms if end is not None else None
    if duration_ms is None and end_ts is not None:
        duration_ms = end_ts - start_ts

    return ToolCallRecord(
        id=record_id(LOG_ID_SCOPE, anchor.line, {"signature": anchor.signature, "start_ts": start_ts}),
        session_id=None,
        tool_name=(start.tool_name if start else None) or (end.tool_name if end else None) or "unknown",
        command=(start.command if start else None) or (end.command if end else None),
        status=_status(end),
        start_ts=start_ts,
        end_ts=end_ts,
        duration_ms=duration_ms,
        exit_code=end.exit_code if end else None,
        error=end.error if end else None,
        source_file=path,
        source_line=anchor.line,
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def parse_tui_log(text: str, path: str) -> list[ToolCallRecord]:
    lines = [strip_ansi(line.rstrip("\r")) for line in text.split("\n")]
    return [build_record(start, end, path) for start, end in pair_events(scan_events(lines))]


def read_tui_log(path: Path) -> str:
    """Log text up to the last newline; a trailing partial entry is left for later.

    Raises:
        OSError: If the file cannot be read.
    """
    data = path.read_bytes()
    cut = data.rfind(b"\n")
    if cut == -1:
        return ""
    return data[:cut].decode("utf-8", errors="replace")


__all__ = [
    "LOG_ID_SCOPE",
    "LogEvent",
    "build_record",
    "build_signature",
    "pair_events",
    "parse_background_event",
    "parse_function_call",
    "parse_log_timestamp",
    "parse_tool_call",
    "parse_tui_log",
    "read_tui_log",
    "scan_events",
    "strip_ansi",
]
