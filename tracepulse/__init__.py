"""Tracepulse - usage metrics from Codex CLI transcripts.

Watches ``~/.codex/sessions`` for rollout transcripts, ingests sessions,
messages, model calls and tool calls into SQLite, and streams ingestion and
metrics events to live dashboard clients.

Example:
    from tracepulse import create_container

    container = create_container()
    run = container.coordinator().run_ingest("incremental")
    print(f"{run.files_ingested} files ingested, {run.files_failed} failed")
"""

from tracepulse.container import ApplicationContainer, create_container
from tracepulse.errors import TracepulseError
from tracepulse.version import TRACEPULSE_VERSION

__version__ = TRACEPULSE_VERSION

__all__ = ["ApplicationContainer", "TracepulseError", "create_container", "__version__"]
