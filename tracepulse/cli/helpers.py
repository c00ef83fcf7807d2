"""Shared CLI helpers."""

from __future__ import annotations

from typing import Any, NoReturn

from tracepulse.lib.json import dumps
from tracepulse.lib.timestamps import format_ms


def fail(command: str, message: str) -> NoReturn:
    raise SystemExit(f"{command}: {message}")


def print_json(payload: Any) -> None:
    print(dumps(payload))


def format_when(ts: int | None) -> str:
    return format_ms(ts) or "-"


def format_counts(records: dict[str, int]) -> str:
    if not records:
        return "no records"
    return ", ".join(f"{count} {kind}" for kind, count in sorted(records.items()))
