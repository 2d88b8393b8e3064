"""corgea-ide: scan orchestration and vulnerability views for IDE integrations."""

__version__ = "0.3.0"

from corgea_ide.core.events import EventBus, EventKind
from corgea_ide.engines.issues.aggregator import AggregatedIssues, IssueAggregator
from corgea_ide.engines.issues.cache import CachedFunction, RequestCache
from corgea_ide.engines.scan.models import ScanProgressEvent, ScanStages, ScanState
from corgea_ide.engines.scan.orchestrator import ScanOrchestrator, ScanPhase
from corgea_ide.engines.scan.parser import OutputParser
from corgea_ide.engines.scan.process import ProcessOutcome, ProcessResult, ProcessRunner

__all__ = [
    "AggregatedIssues",
    "CachedFunction",
    "EventBus",
    "EventKind",
    "IssueAggregator",
    "OutputParser",
    "ProcessOutcome",
    "ProcessResult",
    "ProcessRunner",
    "RequestCache",
    "ScanOrchestrator",
    "ScanPhase",
    "ScanProgressEvent",
    "ScanStages",
    "ScanState",
]
