"""JSONL reading with tolerance for a line that is still being written."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tracepulse.errors import TranscriptParseError
from tracepulse.lib.json import JSONDecodeError, loads


@dataclass(frozen=True)
class JsonlLine:
    number: int
    data: dict[str, Any]
    raw: bytes


@dataclass(frozen=True)
class JsonlReadResult:
    lines: list[JsonlLine]
    skipped_partial_line: bool = False


def parse_jsonl_bytes(data: bytes, *, path: str | None = None) -> JsonlReadResult:
    """Decode JSONL content line by line.

    Blank lines and lines holding non-object JSON are ignored. A final line
    with no terminating newline that fails to decode is treated as a write
    in progress and skipped, but only when an earlier line decoded: content
    with no valid line at all is corrupt, not half-written.

    Raises:
        TranscriptParseError: On any other line that is not valid JSON.
    """
    segments = data.split(b"\n")
    # Content ending in a newline leaves an empty trailing segment.
    unterminated_index = len(segments) - 1 if segments[-1] else None

    lines: list[JsonlLine] = []
    decoded_any = False
    skipped_partial = False
    for index, segment in enumerate(segments):
        raw = segment.strip()
        if not raw:
            continue
        number = index + 1
        try:
            decoded = loads(raw)
        except JSONDecodeError as exc:
            if index == unterminated_index and decoded_any:
                skipped_partial = True
                continue
            raise TranscriptParseError(f"invalid JSON ({exc})", path=path, line=number) from exc
        decoded_any = True
        if isinstance(decoded, dict):
            lines.append(JsonlLine(number=number, data=decoded, raw=raw))
    return JsonlReadResult(lines=lines, skipped_partial_line=skipped_partial)


def read_jsonl(path: Path) -> JsonlReadResult:
    """Read and decode a JSONL file.

    Raises:
        TranscriptParseError: If a complete line is not valid JSON.
        OSError: If the file cannot be read.
    """
    return parse_jsonl_bytes(path.read_bytes(), path=str(path))


__all__ = ["JsonlLine", "JsonlReadResult", "parse_jsonl_bytes", "read_jsonl"]
