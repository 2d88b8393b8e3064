"""Issues engine: Corgea API client, request cache and multi-candidate aggregation."""

from corgea_ide.engines.issues.aggregator import AggregatedIssues, IssueAggregator
from corgea_ide.engines.issues.cache import CachedFunction, RequestCache
from corgea_ide.engines.issues.client import CorgeaClient
from corgea_ide.engines.issues.models import (
    FileGroup,
    IssuePage,
    PackageGroup,
    SCAVulnerability,
    Vulnerability,
)

__all__ = [
    "AggregatedIssues",
    "CachedFunction",
    "CorgeaClient",
    "FileGroup",
    "IssueAggregator",
    "IssuePage",
    "PackageGroup",
    "RequestCache",
    "SCAVulnerability",
    "Vulnerability",
]
