"""Git helpers: remotes, repository names and uncommitted files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Literal

import structlog

log = structlog.get_logger(__name__)

FileStatus = Literal["modified", "untracked", "deleted", "staged"]

# Paths the scanner skips; shown separately when listing uncommitted files.
FILE_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "**/tests/**",
    "**/.corgea/**",
    "**/test/**",
    "**/spec/**",
    "**/specs/**",
    "**/node_modules/**",
    "**/tmp/**",
    "**/migrations/**",
    "**/python*/site-packages/**",
    "**/*.mmdb",
    "**/*.css",
    "**/*.less",
    "**/*.scss",
    "**/*.map",
    "**/*.env",
    "**/*.sh",
    "**/.vs/**",
    "**/.vscode/**",
    "**/.idea/**",
)


@dataclass(frozen=True)
class UncommittedFile:
    path: str
    status: FileStatus
    ignored: bool = False


def is_file_ignored(path: str) -> bool:
    """Return True if *path* matches one of :data:`FILE_EXCLUDE_PATTERNS`.

    Matching is case-insensitive and separator-agnostic. Paths are anchored
    with a leading ``/`` so that ``**/`` also matches at the workspace root.
    """
    normalized = "/" + path.replace("\\", "/").lstrip("/").lower()
    return any(fnmatchcase(normalized, pattern.lower()) for pattern in FILE_EXCLUDE_PATTERNS)


def parse_repo_name(remote_url: str) -> str | None:
    """Extract the repository name from a git remote URL.

    Handles:
      - https://github.com/owner/repo
      - https://github.com/owner/repo.git
      - git@github.com:owner/repo.git
      - ssh://git@host:22/group/sub/repo.git
    """
    url = remote_url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    if not url:
        return None

    if url.startswith("git@") or ("://" not in url and ":" in url):
        url = url.split(":", 1)[1]

    name = url.rsplit("/", 1)[-1]
    return name or None


async def get_remote_urls(folder: Path) -> list[str]:
    """Return the fetch URLs of all remotes of *folder*, or [] on failure."""
    try:
        out = await _run(["git", "-C", str(folder), "remote", "-v"])
    except (OSError, RuntimeError) as exc:
        log.debug("git.remotes_unavailable", folder=str(folder), error=str(exc))
        return []

    urls: list[str] = []
    for line in out.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[2] == "(fetch)" and parts[1] not in urls:
            urls.append(parts[1])
    return urls


async def list_uncommitted_files(folder: Path) -> list[UncommittedFile]:
    """List files with uncommitted changes, flagged when the scanner ignores them."""
    try:
        out = await _run(["git", "-C", str(folder), "status", "--porcelain", "-z"])
    except (OSError, RuntimeError) as exc:
        log.warning("git.status_failed", folder=str(folder), error=str(exc))
        return []
    return _parse_porcelain(out)


def _parse_porcelain(out: str) -> list[UncommittedFile]:
    files: list[UncommittedFile] = []
    entries = iter(out.split("\0"))
    for entry in entries:
        if len(entry) < 4:
            continue
        code, path = entry[:2], entry[3:]
        if code[0] in "RC":
            # -z puts the rename source in the next entry
            next(entries, None)
        files.append(UncommittedFile(path=path, status=_status(code), ignored=is_file_ignored(path)))
    return files


def _status(code: str) -> FileStatus:
    index, worktree = code[0], code[1]
    if code == "??":
        return "untracked"
    if "D" in code:
        return "deleted"
    if index not in " ?" and worktree == " ":
        return "staged"
    return "modified"


async def _run(cmd: list[str]) -> str:
    """Run a git command, returning stdout and raising RuntimeError on failure."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        message = stderr.decode(errors="replace").strip()
        raise RuntimeError(f"git command failed (exit {proc.returncode}): {message}")
    return stdout.decode(errors="replace")
