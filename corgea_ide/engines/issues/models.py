"""Issue payloads returned by the Corgea API, and the grouped projections."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class RemoteModel(BaseModel):
    """Remote-owned payload: immutable, unknown fields kept."""

    model_config = ConfigDict(frozen=True, extra="allow", coerce_numbers_to_str=True)


class Classification(RemoteModel):
    name: str = ""
    id: str | None = None
    description: str | None = None


class FileRef(RemoteModel):
    path: str = ""
    name: str | None = None
    language: str | None = None


class Location(RemoteModel):
    file: FileRef = Field(default_factory=FileRef)
    line_number: int | None = None


class Vulnerability(RemoteModel):
    id: str
    status: str = ""
    urgency: str = ""
    classification: Classification | None = None
    location: Location = Field(default_factory=Location)


class Package(RemoteModel):
    name: str = ""
    version: str | None = None
    fix_version: str | None = None
    ecosystem: str | None = None


class SCAVulnerability(RemoteModel):
    id: str
    cve: str | None = None
    severity: str = ""
    package: Package = Field(default_factory=Package)


IssueT = TypeVar("IssueT", Vulnerability, SCAVulnerability)


class IssuePage(BaseModel, Generic[IssueT]):
    """One page of ``/issues`` or ``/issues/sca``."""

    model_config = ConfigDict(extra="allow")

    status: str = "ok"  # "ok" | "no_project_found"
    page: int = 1
    total_pages: int = 0
    issues: list[IssueT] = Field(default_factory=list)
    total_issues: int | None = None

    @property
    def project_found(self) -> bool:
        return self.status != "no_project_found"


class FileGroup(BaseModel):
    index: int
    path: str
    vulnerabilities: list[Vulnerability]


class PackageGroup(BaseModel):
    index: int
    name: str
    vulnerabilities: list[SCAVulnerability]


def group_by_file(issues: list[Vulnerability]) -> list[FileGroup]:
    """Group by ``location.file.path`` in first-seen order, sorted by line within a file."""
    groups: dict[str, list[Vulnerability]] = {}
    for issue in issues:
        groups.setdefault(issue.location.file.path, []).append(issue)
    return [
        FileGroup(
            index=index,
            path=path,
            vulnerabilities=sorted(vulns, key=lambda v: v.location.line_number or 0),
        )
        for index, (path, vulns) in enumerate(groups.items())
    ]


def group_by_package(issues: list[SCAVulnerability]) -> list[PackageGroup]:
    """Group by ``package.name`` in first-seen order."""
    groups: dict[str, list[SCAVulnerability]] = {}
    for issue in issues:
        groups.setdefault(issue.package.name, []).append(issue)
    return [
        PackageGroup(index=index, name=name, vulnerabilities=vulns)
        for index, (name, vulns) in enumerate(groups.items())
    ]
