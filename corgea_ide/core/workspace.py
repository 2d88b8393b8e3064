"""Workspace identity: the candidate identifiers used to look a project up."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from corgea_ide.core.git import get_remote_urls, parse_repo_name


@dataclass
class WorkspaceCandidates:
    """Identifiers tried in priority order against the issues API.

    ``project_ids`` are project-path candidates (``project=``), ``repo_ids``
    are repository-name candidates (``repo=``).
    """

    project_ids: list[str] = field(default_factory=list)
    repo_ids: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.project_ids or self.repo_ids)


async def workspace_candidates(folder: Path) -> WorkspaceCandidates:
    """Derive candidates from the folder name and its git remotes."""
    folder = folder.resolve()
    candidates = WorkspaceCandidates()
    if folder.name:
        candidates.project_ids.append(folder.name)

    for url in await get_remote_urls(folder):
        name = parse_repo_name(url)
        if name and name not in candidates.repo_ids:
            candidates.repo_ids.append(name)
    return candidates
