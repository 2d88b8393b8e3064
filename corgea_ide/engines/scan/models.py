"""Scan state model shared by the parser, the orchestrator and presentation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

StageName = Literal["init", "package", "upload", "scan"]


@dataclass
class ScanStages:
    init: bool = False
    package: bool = False
    upload: bool = False
    scan: bool = False

    def mark(self, stage: StageName) -> bool:
        """Set *stage* true; return True if it was not set before."""
        if getattr(self, stage):
            return False
        setattr(self, stage, True)
        return True


@dataclass
class ScanProgressEvent:
    stage: str  # init | package | upload | scan | url_ready | completed | cancelled
    message: str
    timestamp: datetime
    percentage: float | None = None


@dataclass
class ScanState:
    """Mutable scan state; owned by ScanOrchestrator, read through snapshots."""

    is_scanning: bool = False
    stages: ScanStages = field(default_factory=ScanStages)
    progress: list[ScanProgressEvent] = field(default_factory=list)
    scan_id: str | None = None
    scan_url: str | None = None
    output: list[str] = field(default_factory=list)
    error: str | None = None

    def snapshot(self) -> ScanState:
        """Independent copy; transcript lines are shared since strings are immutable."""
        return replace(
            self,
            stages=replace(self.stages),
            progress=[replace(event) for event in self.progress],
            output=list(self.output),
        )

    def apply(self, update: StateUpdate, now: datetime) -> bool:
        """Fold a parser update into the state; return True if progress changed.

        ``scan_id`` and ``scan_url`` are set once per scan; later lines
        carrying them only land in the transcript.
        """
        self.output.append(update.line)

        if update.percentage is not None:
            latest = self.progress[-1] if self.progress else None
            if latest is not None and latest.stage == "upload":
                latest.percentage = update.percentage
                latest.timestamp = now
            else:
                self.progress.append(
                    ScanProgressEvent(
                        stage="upload",
                        message="Uploading project...",
                        timestamp=now,
                        percentage=update.percentage,
                    )
                )
            return True

        if update.scan_id is not None:
            if self.scan_id is not None:
                return False
            self.scan_id = update.scan_id
        if update.scan_url is not None:
            if self.scan_url is not None:
                return False
            self.scan_url = update.scan_url

        if update.progress_stage is None:
            return False
        if update.stage is not None:
            self.stages.mark(update.stage)
        self.progress.append(
            ScanProgressEvent(stage=update.progress_stage, message=update.message or "", timestamp=now)
        )
        return True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for event in data["progress"]:
            event["timestamp"] = event["timestamp"].isoformat()
        return data


@dataclass(frozen=True)
class StateUpdate:
    """What one transcript line means for the scan state.

    Every line yields an update (the line itself goes to the transcript);
    the optional fields are set only when a marker matched.
    """

    line: str
    stage: StageName | None = None
    progress_stage: str | None = None
    message: str | None = None
    percentage: float | None = None
    scan_id: str | None = None
    scan_url: str | None = None
