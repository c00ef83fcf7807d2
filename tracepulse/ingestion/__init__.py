"""Transcript discovery, parsing and upserting."""

from __future__ import annotations

from .discovery import discover_transcripts, is_transcript, session_id_from_filename
from .parsers import parse_transcript
from .upserter import FileIngestResult, TranscriptIngester, compute_signature

__all__ = [
    "FileIngestResult",
    "TranscriptIngester",
    "compute_signature",
    "discover_transcripts",
    "is_transcript",
    "parse_transcript",
    "session_id_from_filename",
]
