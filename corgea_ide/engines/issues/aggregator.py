"""Multi-candidate, multi-page issue fetch.

The workspace can be known to the server under several names. Candidates are
tried in order (project paths, then repository names); the first one with
issues wins and all its pages are collected.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

import structlog

from corgea_ide.engines.issues.models import IssuePage
from corgea_ide.exceptions import AuthenticationError, UnsupportedVersionError

log = structlog.get_logger(__name__)

IssueT = TypeVar("IssueT")

CandidateKind = Literal["project", "repo"]
PageFetcher = Callable[..., Awaitable[IssuePage]]


@dataclass
class AggregatedIssues(Generic[IssueT]):
    status: str = "ok"
    issues: list[IssueT] = field(default_factory=list)
    candidate: str | None = None
    total_issues: int = 0

    @property
    def project_found(self) -> bool:
        return self.candidate is not None


def iter_candidates(
    project_ids: Iterable[str], repo_ids: Iterable[str]
) -> Iterator[tuple[CandidateKind, str]]:
    seen: set[tuple[CandidateKind, str]] = set()
    for kind, values in (("project", project_ids), ("repo", repo_ids)):
        for value in values:
            if value and (kind, value) not in seen:
                seen.add((kind, value))
                yield kind, value


def dedupe_by_id(issues: Iterable[IssueT]) -> list[IssueT]:
    seen: set[Any] = set()
    unique = []
    for issue in issues:
        issue_id = getattr(issue, "id", None)
        if issue_id in seen:
            continue
        seen.add(issue_id)
        unique.append(issue)
    return unique


class IssueAggregator(Generic[IssueT]):
    """Fetch every page for the first candidate that has issues.

    *fetch_page* is a client method such as
    :meth:`CorgeaClient.get_issues_page`. Authentication and end-of-life
    errors propagate; any other failure skips to the next candidate.
    """

    def __init__(self, fetch_page: PageFetcher) -> None:
        self._fetch_page = fetch_page

    async def fetch(
        self,
        project_ids: Iterable[str] = (),
        repo_ids: Iterable[str] = (),
    ) -> AggregatedIssues[IssueT]:
        for kind, value in iter_candidates(project_ids, repo_ids):
            try:
                found = await self._fetch_candidate(kind, value)
            except (AuthenticationError, UnsupportedVersionError):
                raise
            except Exception as exc:
                log.warning("issues.candidate_failed", kind=kind, candidate=value, error=str(exc))
                continue
            if found is not None:
                return found
        log.info("issues.no_candidate_matched")
        return AggregatedIssues()

    async def _fetch_candidate(
        self, kind: CandidateKind, value: str
    ) -> AggregatedIssues[IssueT] | None:
        collected: list[IssueT] = []
        total_issues: int | None = None
        page = 1
        while True:
            result = await self._fetch_page(**{kind: value}, page=page)
            if not result.project_found:
                log.debug("issues.no_project_found", kind=kind, candidate=value)
                break
            if total_issues is None:
                total_issues = result.total_issues
            collected.extend(result.issues)
            page += 1
            if page > result.total_pages:
                break

        if not collected:
            return None
        issues = dedupe_by_id(collected)
        log.info(
            "issues.candidate_matched",
            kind=kind,
            candidate=value,
            pages=page - 1,
            issues=len(issues),
        )
        return AggregatedIssues(
            issues=issues,
            candidate=value,
            total_issues=total_issues if total_issues is not None else len(issues),
        )
