"""Scan orchestrator: the state machine around one scanner run.

Phases::

    UNINITIALIZED -> IDLE -> INITIALIZING -> AUTHENTICATING -> SCANNING
        -> COMPLETED | CANCELLED | ERROR

Every accepted ``scan_project`` call publishes ``scan.started`` and exactly
one of ``scan.completed``, ``scan.cancelled`` or ``scan.error``.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import structlog

from corgea_ide.core.events import EventBus, EventKind
from corgea_ide.core.notify import Notifier
from corgea_ide.core.storage import CredentialStore
from corgea_ide.engines.scan.models import ScanProgressEvent, ScanState, StateUpdate
from corgea_ide.engines.scan.parser import OutputParser
from corgea_ide.engines.scan.process import ProcessOutcome, ProcessResult, ProcessRunner
from corgea_ide.exceptions import (
    BootstrapError,
    CorgeaError,
    PreconditionError,
    ProcessError,
)

log = structlog.get_logger(__name__)

_TRANSCRIPT_TAIL = 20


class ScanPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    INITIALIZING = "initializing"
    AUTHENTICATING = "authenticating"
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class Environment(Protocol):
    async def ensure(self) -> str: ...


class ScanGate(Protocol):
    async def is_ide_scanning_enabled(self) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanOrchestrator:
    """Runs ``login`` then ``scan`` through the scanner CLI and tracks progress.

    All collaborators are injected; *runner* defaults to a
    :class:`ProcessRunner` rooted at *workspace*. The live :class:`ScanState`
    never leaves this object: :attr:`state` and event payloads are snapshots.
    """

    def __init__(
        self,
        workspace: Path,
        environment: Environment,
        credentials: CredentialStore,
        bus: EventBus,
        notifier: Notifier,
        *,
        runner: ProcessRunner | None = None,
        config_service: ScanGate | None = None,
        clock: Callable[[], datetime] = _utcnow,
        kill_grace: float = 3.0,
    ) -> None:
        self._workspace = workspace
        self._environment = environment
        self._credentials = credentials
        self._bus = bus
        self._notifier = notifier
        self._runner = runner or ProcessRunner(workspace, kill_grace=kill_grace)
        self._config_service = config_service
        self._clock = clock
        self._parser = OutputParser()
        self._state = ScanState()
        self._phase = ScanPhase.UNINITIALIZED
        self._cancel_requested = False

    @property
    def state(self) -> ScanState:
        return self._state.snapshot()

    @property
    def phase(self) -> ScanPhase:
        return self._phase

    @property
    def is_scanning(self) -> bool:
        return self._state.is_scanning

    async def initialize(self) -> bool:
        """Bootstrap the environment ahead of the first scan.

        Returns False (and logs) when bootstrap fails; ``scan_project`` will
        retry it and report the failure to the user.
        """
        try:
            await self._environment.ensure()
        except (PreconditionError, BootstrapError) as exc:
            log.warning("scan.bootstrap_deferred", error=str(exc))
            return False
        if self._phase is ScanPhase.UNINITIALIZED:
            self._phase = ScanPhase.IDLE
        return True

    async def scan_project(self, full_scan: bool = True) -> ScanState | None:
        """Run a scan to its end and return the final state snapshot.

        Returns None when the request is rejected: a scan is already running
        (warning notice) or company configuration disables IDE scanning
        (error notice). Rejections publish nothing and leave state alone.
        """
        if self._reject_if_busy():
            return None
        if self._config_service is not None:
            if not await self._config_service.is_ide_scanning_enabled():
                self._notifier.error(
                    "IDE scanning is disabled for your organization. "
                    "Contact your administrator to enable it."
                )
                return None
            if self._reject_if_busy():
                return None

        self._state = ScanState(is_scanning=True)
        self._cancel_requested = False
        self._parser.reset()
        log.info("scan.started", workspace=str(self._workspace), full_scan=full_scan)
        self._publish(EventKind.SCAN_STARTED)

        try:
            outcome = await self._run(full_scan)
        except asyncio.CancelledError:
            self._finish_cancelled(user_requested=self._cancel_requested)
            raise
        except CorgeaError as exc:
            self._finish_error(str(exc), getattr(exc, "output", ""))
        except Exception as exc:
            log.exception("scan.unexpected_error")
            self._finish_error(f"Scan failed: {exc}")
        else:
            if outcome is ProcessOutcome.SUCCEEDED:
                self._finish_completed()
            else:
                self._finish_cancelled(user_requested=self._cancel_requested)
        return self.state

    async def cancel_scan(self) -> bool:
        """Request cancellation of the running scan.

        The flag is set before the process tree is terminated, so a flow that
        has not spawned yet stops before its next spawn.
        """
        if not self._state.is_scanning:
            self._notifier.info("No scan is currently running.")
            return False
        self._cancel_requested = True
        log.info("scan.cancel_requested", phase=self._phase.value, pid=self._runner.pid)
        await self._runner.terminate_tree()
        return True

    # -- flow ---------------------------------------------------------------

    async def _run(self, full_scan: bool) -> ProcessOutcome:
        self._phase = ScanPhase.INITIALIZING
        command = await self._environment.ensure()
        if self._cancel_requested:
            return ProcessOutcome.CANCELLED

        self._phase = ScanPhase.AUTHENTICATING
        base_url = await self._credentials.get_base_url()
        token = await self._credentials.get_token()
        if not base_url or not token:
            raise PreconditionError("Not logged in to Corgea. Please log in before scanning.")
        if self._cancel_requested:
            return ProcessOutcome.CANCELLED

        result = await self._runner.run(
            command,
            ["login", "--url", base_url, token],
            cancel_requested=self._is_cancel_requested,
            secrets=[token],
        )
        if result.outcome is ProcessOutcome.CANCELLED:
            self._note_external_termination(result)
            return result.outcome
        if result.outcome is ProcessOutcome.FAILED:
            raise ProcessError(
                "Failed to authenticate the Corgea CLI.",
                output=result.output,
                exit_code=result.exit_code,
            )
        if self._cancel_requested:
            return ProcessOutcome.CANCELLED

        self._phase = ScanPhase.SCANNING
        args = ["scan"] if full_scan else ["scan", "--only-uncommitted"]
        result = await self._runner.run(
            command,
            args,
            on_output=self._on_output,
            cancel_requested=self._is_cancel_requested,
        )
        for update in self._parser.flush():
            self._apply(update)

        if result.outcome is ProcessOutcome.FAILED:
            message = result.error or "Scan failed."
            if not self._state.output and result.exit_code is None:
                message = f"Failed to start scan: {message}"
            raise ProcessError(message, output=result.output, exit_code=result.exit_code)
        if result.outcome is ProcessOutcome.CANCELLED:
            self._note_external_termination(result)
        return result.outcome

    def _is_cancel_requested(self) -> bool:
        return self._cancel_requested

    def _note_external_termination(self, result: ProcessResult) -> None:
        if result.terminated_by_signal and not self._cancel_requested:
            log.warning("scan.externally_terminated", signal=result.signal)

    def _on_output(self, chunk: str, stream: str) -> None:
        for update in self._parser.feed(chunk, stream):
            self._apply(update)

    def _apply(self, update: StateUpdate) -> None:
        changed = self._state.apply(update, self._clock())
        self._publish(EventKind.SCAN_OUTPUT)
        if changed:
            self._publish(EventKind.SCAN_PROGRESS)

    # -- terminal transitions -----------------------------------------------

    def _finish_completed(self) -> None:
        state = self._state
        state.stages.scan = True
        state.progress.append(
            ScanProgressEvent(
                stage="completed", message="Scan completed successfully", timestamp=self._clock()
            )
        )
        self._finish(ScanPhase.COMPLETED, EventKind.SCAN_COMPLETED)
        log.info("scan.completed", scan_id=state.scan_id, scan_url=state.scan_url)
        self._notifier.info("Scan completed successfully.")

    def _finish_cancelled(self, *, user_requested: bool) -> None:
        self._state.progress.append(
            ScanProgressEvent(stage="cancelled", message="Scan cancelled", timestamp=self._clock())
        )
        self._finish(ScanPhase.CANCELLED, EventKind.SCAN_CANCELLED)
        log.info("scan.cancelled", user_requested=user_requested)
        self._notifier.info("Scan cancelled.")

    def _finish_error(self, message: str, output: str = "") -> None:
        self._state.error = message
        tail = (output.splitlines() or self._state.output)[-_TRANSCRIPT_TAIL:]
        self._finish(ScanPhase.ERROR, EventKind.SCAN_ERROR)
        log.error("scan.failed", error=message, output_tail=tail)
        self._notifier.error(message)

    def _finish(self, phase: ScanPhase, kind: EventKind) -> None:
        self._state.is_scanning = False
        self._phase = phase
        self._publish(kind)

    def _reject_if_busy(self) -> bool:
        if not self._state.is_scanning:
            return False
        log.info("scan.rejected_busy")
        self._notifier.warning("A scan is already in progress.")
        return True

    def _publish(self, kind: EventKind) -> None:
        if self._bus.has_subscribers(kind):
            self._bus.publish(kind, self._state.snapshot())
