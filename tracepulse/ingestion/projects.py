"""Project attribution for sessions.

A session belongs to the project rooted at the git checkout that contains
its working directory, or at the working directory itself when no checkout
is found. The name comes from the origin remote when one is known, else from
the root directory. Project ids hash the name and the root path, so the same
checkout always maps to the same project.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePath

from tracepulse.lib.hashing import hash_payload
from tracepulse.lib.log import get_logger
from tracepulse.storage.store import ParsedTranscript, ProjectRecord, SessionRecord

logger = get_logger(__name__)

GIT_DIR = ".git"
PROJECT_ID_LENGTH = 16

_SECTION_RE = re.compile(r'^\[\s*([^\]\s"]+)(?:\s+"([^"]*)")?\s*\]')
_KEY_RE = re.compile(r"^([A-Za-z][\w-]*)\s*=\s*(.*)$")
_GITDIR_RE = re.compile(r"^gitdir:\s*(.+)$", re.MULTILINE)


def normalize_git_url(url: str | None) -> str | None:
    """Canonical form of a remote URL: lowercase https, no ``.git`` suffix.

    ``git@github.com:user/repo.git`` and ``https://github.com/User/repo/``
    both become ``https://github.com/user/repo``.
    """
    if not url or not url.strip():
        return None
    normalized = url.strip().lower().rstrip("/")
    if normalized.endswith(".git"):
        normalized = normalized[:-4]
    if normalized.startswith("git@"):
        normalized = "https://" + normalized[len("git@"):].replace(":", "/", 1)
    elif normalized.startswith("ssh://git@"):
        normalized = "https://" + normalized[len("ssh://git@"):]
    return normalized


def repo_name_from_remote(url: str | None) -> str | None:
    normalized = normalize_git_url(url)
    if normalized is None:
        return None
    return normalized.rsplit("/", 1)[-1] or None


def find_git_root(start: Path) -> Path | None:
    """Nearest directory at or above ``start`` holding ``.git`` (a directory or a worktree file)."""
    try:
        current = start.expanduser().resolve()
        for candidate in (current, *current.parents):
            if (candidate / GIT_DIR).exists():
                return candidate
    except OSError as exc:
        logger.debug("git_root_lookup_failed", path=str(start), error=str(exc))
    return None


def _config_path(root: Path) -> Path | None:
    git_path = root / GIT_DIR
    if git_path.is_dir():
        config = git_path / "config"
        return config if config.is_file() else None

    # Worktrees and submodules: .git is a file pointing at the real git dir.
    # A worktree shares the config found through its commondir.
    match = _GITDIR_RE.search(git_path.read_text(encoding="utf-8", errors="replace"))
    if match is None:
        return None
    git_dir = root / match.group(1).strip()
    commondir = git_dir / "commondir"
    if commondir.is_file():
        git_dir = (git_dir / commondir.read_text(encoding="utf-8").strip()).resolve()
    config = git_dir / "config"
    return config if config.is_file() else None


def read_origin_url(config_text: str) -> str | None:
    """The ``url`` of ``[remote "origin"]`` in git config text."""
    section: tuple[str, str | None] | None = None
    for raw in config_text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        header = _SECTION_RE.match(line)
        if header is not None:
            section = (header.group(1).lower(), header.group(2))
            continue
        if section != ("remote", "origin"):
            continue
        entry = _KEY_RE.match(line)
        if entry is not None and entry.group(1).lower() == "url":
            value = entry.group(2).strip()
            if len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            return value or None
    return None


def _remote_for_root(root: Path) -> str | None:
    try:
        config = _config_path(root)
        if config is None:
            return None
        return normalize_git_url(read_origin_url(config.read_text(encoding="utf-8", errors="replace")))
    except OSError as exc:
        logger.debug("git_config_unreadable", root=str(root), error=str(exc))
        return None


def detect_git_remote(path: Path) -> str | None:
    """Normalized origin URL of the checkout containing ``path``, read from disk."""
    root = find_git_root(path)
    return _remote_for_root(root) if root is not None else None


def derive_project(session: SessionRecord, *, inspect_git: bool = True) -> ProjectRecord | None:
    """Project for a session; None when the session has no working directory."""
    cwd = (session.cwd or "").strip()
    if not cwd:
        return None

    root = find_git_root(Path(cwd)) if inspect_git else None
    remote = normalize_git_url(session.git_remote)
    if remote is None and root is not None:
        remote = _remote_for_root(root)

    root_path = str(root) if root is not None else cwd
    name = repo_name_from_remote(remote) or PurePath(root_path).name or "unknown"
    return ProjectRecord(
        id=hash_payload({"name": name, "root_path": root_path}, PROJECT_ID_LENGTH),
        name=name,
        root_path=root_path,
        git_remote=remote,
        first_seen_ts=session.ts,
        last_seen_ts=session.ts,
    )


def attach_projects(parsed: ParsedTranscript, *, inspect_git: bool = True) -> ParsedTranscript:
    """Copy of ``parsed`` with each session linked to its project."""
    projects: dict[str, ProjectRecord] = {}
    sessions: list[SessionRecord] = []
    for session in parsed.sessions:
        project = derive_project(session, inspect_git=inspect_git)
        if project is None:
            sessions.append(session)
            continue
        known = projects.get(project.id)
        if known is not None:
            project = known.model_copy(
                update={
                    "first_seen_ts": min(known.first_seen_ts, project.first_seen_ts),
                    "last_seen_ts": max(known.last_seen_ts, project.last_seen_ts),
                }
            )
        projects[project.id] = project
        sessions.append(session.model_copy(update={"project_id": project.id}))
    return parsed.model_copy(update={"sessions": sessions, "projects": list(projects.values())})


__all__ = [
    "attach_projects",
    "derive_project",
    "detect_git_remote",
    "find_git_root",
    "normalize_git_url",
    "read_origin_url",
    "repo_name_from_remote",
]
