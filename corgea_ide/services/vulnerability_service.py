"""VulnerabilityService: cached code and SCA issue views for the workspace."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from corgea_ide.core.events import EventBus, EventKind
from corgea_ide.core.storage import CredentialStore
from corgea_ide.core.workspace import WorkspaceCandidates, workspace_candidates
from corgea_ide.engines.issues.aggregator import AggregatedIssues, IssueAggregator
from corgea_ide.engines.issues.cache import RequestCache
from corgea_ide.engines.issues.models import (
    FileGroup,
    PackageGroup,
    SCAVulnerability,
    Vulnerability,
    group_by_file,
    group_by_package,
)
from corgea_ide.exceptions import AuthenticationError
from corgea_ide.services import ClientFactory, open_client
from corgea_ide.services.auth_service import AuthService

log = structlog.get_logger(__name__)


@dataclass
class VulnerabilityReport:
    authenticated: bool
    project_found: bool = False
    issues: list[Vulnerability] = field(default_factory=list)
    sca_issues: list[SCAVulnerability] = field(default_factory=list)
    file_groups: list[FileGroup] = field(default_factory=list)
    package_groups: list[PackageGroup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "project_found": self.project_found,
            "issues": [i.model_dump(mode="json") for i in self.issues],
            "sca_issues": [i.model_dump(mode="json") for i in self.sca_issues],
            "file_groups": [g.model_dump(mode="json") for g in self.file_groups],
            "package_groups": [g.model_dump(mode="json") for g in self.package_groups],
        }


class VulnerabilityService:
    """Serves issue lists through a :class:`RequestCache`.

    Login and logout events clear the cache.
    """

    def __init__(
        self,
        workspace: Path,
        credentials: CredentialStore,
        bus: EventBus,
        auth: AuthService,
        client_factory: ClientFactory,
        cache: RequestCache | None = None,
        ttl: float = 60.0,
    ) -> None:
        self._workspace = workspace
        self._credentials = credentials
        self._auth = auth
        self._client_factory = client_factory
        self._cache = cache if cache is not None else RequestCache()
        self._code = self._cache.wrap(self._fetch_code, ttl)
        self._sca = self._cache.wrap(self._fetch_sca, ttl)
        bus.subscribe(EventKind.LOGIN, self._on_auth_changed)
        bus.subscribe(EventKind.LOGOUT, self._on_auth_changed)

    async def candidates(self) -> WorkspaceCandidates:
        return await workspace_candidates(self._workspace)

    async def code_issues(
        self, candidates: WorkspaceCandidates | None = None
    ) -> AggregatedIssues[Vulnerability]:
        if candidates is None:
            candidates = await self.candidates()
        return await self._code(candidates.project_ids, candidates.repo_ids)

    async def sca_issues(
        self, candidates: WorkspaceCandidates | None = None
    ) -> AggregatedIssues[SCAVulnerability]:
        if candidates is None:
            candidates = await self.candidates()
        return await self._sca(candidates.project_ids, candidates.repo_ids)

    async def issue_details(self, issue_id: str) -> dict[str, Any]:
        async with await open_client(self._credentials, self._client_factory) as client:
            return await client.get_issue(issue_id)

    async def refresh(self) -> VulnerabilityReport:
        """Drop cached lists and fetch code and SCA issues again."""
        self._cache.clear()

        if not await self._credentials.is_logged_in():
            return VulnerabilityReport(authenticated=False)

        candidates = await self.candidates()
        if not candidates:
            log.info("vulns.no_candidates", workspace=str(self._workspace))
            return VulnerabilityReport(authenticated=True)

        try:
            code, sca = await asyncio.gather(
                self.code_issues(candidates), self.sca_issues(candidates)
            )
        except AuthenticationError:
            await self._auth.demote()
            return VulnerabilityReport(authenticated=False)

        log.info(
            "vulns.refreshed",
            candidate=code.candidate or sca.candidate,
            issues=len(code.issues),
            sca_issues=len(sca.issues),
        )
        return VulnerabilityReport(
            authenticated=True,
            project_found=code.project_found or sca.project_found,
            issues=code.issues,
            sca_issues=sca.issues,
            file_groups=group_by_file(code.issues),
            package_groups=group_by_package(sca.issues),
        )

    def _on_auth_changed(self, _payload: Any) -> None:
        self._cache.clear()

    async def _fetch_code(
        self, project_ids: list[str], repo_ids: list[str]
    ) -> AggregatedIssues[Vulnerability]:
        async with await open_client(self._credentials, self._client_factory) as client:
            return await IssueAggregator(client.get_issues_page).fetch(project_ids, repo_ids)

    async def _fetch_sca(
        self, project_ids: list[str], repo_ids: list[str]
    ) -> AggregatedIssues[SCAVulnerability]:
        async with await open_client(self._credentials, self._client_factory) as client:
            return await IssueAggregator(client.get_sca_issues_page).fetch(project_ids, repo_ids)
