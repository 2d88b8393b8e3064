"""Scan engine: scanner process supervision, output parsing and the scan state machine."""

from corgea_ide.engines.scan.environment import ScanEnvironment
from corgea_ide.engines.scan.models import ScanProgressEvent, ScanStages, ScanState, StateUpdate
from corgea_ide.engines.scan.orchestrator import ScanOrchestrator, ScanPhase
from corgea_ide.engines.scan.parser import OutputParser
from corgea_ide.engines.scan.process import ProcessOutcome, ProcessResult, ProcessRunner

__all__ = [
    "OutputParser",
    "ProcessOutcome",
    "ProcessResult",
    "ProcessRunner",
    "ScanEnvironment",
    "ScanOrchestrator",
    "ScanPhase",
    "ScanProgressEvent",
    "ScanStages",
    "ScanState",
    "StateUpdate",
]
