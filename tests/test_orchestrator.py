"""Tests for ScanOrchestrator with a fake runner and environment."""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
import sys
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from corgea_ide.core.events import EventKind
from corgea_ide.engines.scan.models import ScanState
from corgea_ide.engines.scan.orchestrator import ScanOrchestrator, ScanPhase
from corgea_ide.engines.scan.process import ProcessOutcome, ProcessResult, ProcessRunner, classify
from corgea_ide.exceptions import BootstrapError, PreconditionError

URL = "https://www.corgea.app"
TOKEN = "tok-123"

HAPPY_TRANSCRIPT = [
    "Packaging your project\n",
    "Project packaged successfully\n",
    "[50%]\n",
    "Scan has started with ID: abc-123\n",
]

TRAPPING_SCANNER = """\
import signal, sys, time
if sys.argv[1] == "login":
    sys.exit(0)
signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))
print("Packaging your project", flush=True)
time.sleep(60)
"""


class FakeEnvironment:
    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None,
                 command: str = "corgea"):
        self.error = error
        self.gate = gate
        self.command = command
        self.calls = 0

    async def ensure(self) -> str:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.command


class FakeRunner:
    """Scripted stand-in for ProcessRunner.

    ``login`` returns *login_result*. ``scan`` feeds *chunks* to the output
    callback, optionally waits on *gate* (released by ``terminate_tree``),
    then exits with *exit_code*.
    """

    def __init__(self, chunks=(), exit_code=0, login_result=None, block=False):
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.login_result = login_result or ProcessResult(ProcessOutcome.SUCCEEDED, exit_code=0)
        self.gate = asyncio.Event() if block else None
        self.started = asyncio.Event()
        self.calls: list[tuple[str, list[str], list[str]]] = []
        self.terminate_calls = 0
        self.killed = False
        self._running = False

    @property
    def pid(self):
        return 4242 if self._running else None

    @property
    def running(self):
        return self._running

    async def run(self, command, args=(), *, on_output=None, cancel_requested=lambda: False,
                  secrets=()):
        self.calls.append((command, list(args), list(secrets)))
        if args[0] == "login":
            return self.login_result

        self._running = True
        self.started.set()
        try:
            for chunk in self.chunks:
                on_output(chunk, "stdout")
            if self.gate is not None:
                await self.gate.wait()
        finally:
            self._running = False

        code = -signal.SIGTERM if self.killed else self.exit_code
        outcome, sig = classify(code, cancel_requested())
        result = ProcessResult(outcome, exit_code=code, output="".join(self.chunks), signal=sig)
        if outcome is ProcessOutcome.FAILED:
            result.error = f"Process exited with code {code}"
        return result

    async def terminate_tree(self):
        self.terminate_calls += 1
        if self._running:
            self.killed = True
            self.gate.set()


class Recorder:
    def __init__(self, bus):
        self.events: list[tuple[EventKind, object]] = []
        for kind in EventKind:
            bus.subscribe(kind, lambda payload, kind=kind: self.events.append((kind, payload)))

    def kinds(self) -> list[EventKind]:
        return [k for k, _ in self.events]

    def terminal(self) -> list[EventKind]:
        return [k for k in self.kinds() if k.is_terminal]


class FakeGate:
    def __init__(self, enabled: bool):
        self.enabled = enabled

    async def is_ide_scanning_enabled(self) -> bool:
        return self.enabled


@pytest_asyncio.fixture
async def logged_in(store):
    await store.set_base_url(URL)
    await store.set_token(TOKEN)
    await store.set_logged_in(True)
    return store


@pytest.fixture
def make_orchestrator(tmp_path, bus, notifier, store):
    def _make(runner=None, environment=None, config_service=None):
        return ScanOrchestrator(
            tmp_path,
            environment or FakeEnvironment(),
            store,
            bus,
            notifier,
            runner=runner or FakeRunner(HAPPY_TRANSCRIPT),
            config_service=config_service,
            clock=lambda: datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    return _make


# ── Happy path ──


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_full_scan_completes(self, logged_in, make_orchestrator, bus, notifier):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        orch = make_orchestrator(runner=runner)

        state = await orch.scan_project()

        assert state.stages.init and state.stages.package
        assert state.stages.upload and state.stages.scan
        assert state.scan_id == "abc-123"
        assert state.progress[-1].stage == "completed"
        assert state.is_scanning is False
        assert state.error is None
        assert orch.phase is ScanPhase.COMPLETED
        assert rec.kinds()[0] is EventKind.SCAN_STARTED
        assert rec.terminal() == [EventKind.SCAN_COMPLETED]
        assert rec.kinds()[-1] is EventKind.SCAN_COMPLETED
        assert notifier.of("info") == ["Scan completed successfully."]

    @pytest.mark.asyncio
    async def test_login_then_scan_commands(self, logged_in, make_orchestrator):
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        await make_orchestrator(runner=runner).scan_project()
        assert runner.calls == [
            ("corgea", ["login", "--url", URL, TOKEN], [TOKEN]),
            ("corgea", ["scan"], []),
        ]

    @pytest.mark.asyncio
    async def test_uncommitted_scan_flag(self, logged_in, make_orchestrator):
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        await make_orchestrator(runner=runner).scan_project(full_scan=False)
        assert runner.calls[-1][1] == ["scan", "--only-uncommitted"]

    @pytest.mark.asyncio
    async def test_output_and_progress_events(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        await make_orchestrator().scan_project()
        assert rec.kinds().count(EventKind.SCAN_OUTPUT) == len(HAPPY_TRANSCRIPT)
        assert rec.kinds().count(EventKind.SCAN_PROGRESS) == len(HAPPY_TRANSCRIPT)

    @pytest.mark.asyncio
    async def test_event_payloads_are_snapshots(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        orch = make_orchestrator()
        await orch.scan_project()
        started = rec.events[0][1]
        assert started.is_scanning is True
        assert started.output == []
        started.output.append("tamper")
        assert "tamper" not in orch.state.output

    @pytest.mark.asyncio
    async def test_no_snapshot_for_unsubscribed_events(
        self, logged_in, make_orchestrator, bus, monkeypatch
    ):
        taken = []
        original = ScanState.snapshot

        def counting_snapshot(self):
            taken.append(1)
            return original(self)

        monkeypatch.setattr(ScanState, "snapshot", counting_snapshot)
        completed = []
        bus.subscribe(EventKind.SCAN_COMPLETED, completed.append)
        lines = [f"line {i}\n" for i in range(500)]

        state = await make_orchestrator(runner=FakeRunner(HAPPY_TRANSCRIPT + lines)).scan_project()

        assert len(state.output) == len(HAPPY_TRANSCRIPT) + 500
        assert len(completed) == 1
        # one for the completed event, one for the returned state
        assert len(taken) == 2

    @pytest.mark.asyncio
    async def test_new_scan_resets_state(self, logged_in, make_orchestrator):
        orch = make_orchestrator(runner=FakeRunner(HAPPY_TRANSCRIPT))
        await orch.scan_project()
        orch._runner = FakeRunner(["nothing to see\n"])
        state = await orch.scan_project()
        assert state.scan_id is None
        assert state.output == ["nothing to see"]
        assert state.stages.init is False
        assert state.stages.scan is True

    @pytest.mark.asyncio
    async def test_initialize_moves_to_idle(self, make_orchestrator):
        orch = make_orchestrator()
        assert orch.phase is ScanPhase.UNINITIALIZED
        assert await orch.initialize() is True
        assert orch.phase is ScanPhase.IDLE

    @pytest.mark.asyncio
    async def test_initialize_failure_stays_uninitialized(self, make_orchestrator):
        orch = make_orchestrator(environment=FakeEnvironment(PreconditionError("no runtime")))
        assert await orch.initialize() is False
        assert orch.phase is ScanPhase.UNINITIALIZED


# ── Rejections ──


class TestRejections:
    @pytest.mark.asyncio
    async def test_second_scan_rejected_while_running(
        self, logged_in, make_orchestrator, bus, notifier
    ):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT, block=True)
        orch = make_orchestrator(runner=runner)

        first = asyncio.create_task(orch.scan_project())
        await asyncio.wait_for(runner.started.wait(), timeout=5)
        output_before = orch.state.output

        assert await orch.scan_project() is None
        assert notifier.of("warning") == ["A scan is already in progress."]
        assert rec.kinds().count(EventKind.SCAN_STARTED) == 1
        assert orch.state.output == output_before

        runner.gate.set()
        await first
        assert rec.terminal() == [EventKind.SCAN_COMPLETED]

    @pytest.mark.asyncio
    async def test_disabled_by_company_config(self, logged_in, make_orchestrator, bus, notifier):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        orch = make_orchestrator(runner=runner, config_service=FakeGate(False))

        assert await orch.scan_project() is None
        assert rec.events == []
        assert runner.calls == []
        assert len(notifier.of("error")) == 1

    @pytest.mark.asyncio
    async def test_enabled_by_company_config(self, logged_in, make_orchestrator):
        orch = make_orchestrator(config_service=FakeGate(True))
        state = await orch.scan_project()
        assert state.progress[-1].stage == "completed"


# ── Errors ──


class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_credentials(self, make_orchestrator, bus, notifier):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        orch = make_orchestrator(runner=runner)

        state = await orch.scan_project()

        assert runner.calls == []
        assert state.error
        assert state.is_scanning is False
        assert orch.phase is ScanPhase.ERROR
        assert rec.terminal() == [EventKind.SCAN_ERROR]
        assert notifier.of("error") == [state.error]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [PreconditionError("CLI package missing"), BootstrapError("extract failed")]
    )
    async def test_environment_failure(self, logged_in, make_orchestrator, bus, error):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        orch = make_orchestrator(runner=runner, environment=FakeEnvironment(error))

        state = await orch.scan_project()

        assert state.error == str(error)
        assert runner.calls == []
        assert rec.terminal() == [EventKind.SCAN_ERROR]

    @pytest.mark.asyncio
    async def test_login_failure(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        runner = FakeRunner(
            HAPPY_TRANSCRIPT,
            login_result=ProcessResult(ProcessOutcome.FAILED, exit_code=1, output="denied"),
        )
        orch = make_orchestrator(runner=runner)

        state = await orch.scan_project()

        assert len(runner.calls) == 1
        assert state.error
        assert rec.terminal() == [EventKind.SCAN_ERROR]

    @pytest.mark.asyncio
    async def test_scan_nonzero_exit(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        orch = make_orchestrator(runner=FakeRunner(["Packaging your project\n"], exit_code=2))

        state = await orch.scan_project()

        assert "2" in state.error
        assert state.stages.init is True
        assert state.stages.scan is False
        assert orch.phase is ScanPhase.ERROR
        assert rec.terminal() == [EventKind.SCAN_ERROR]


# ── Cancellation ──


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, make_orchestrator, notifier):
        orch = make_orchestrator()
        assert await orch.cancel_scan() is False
        assert notifier.of("info") == ["No scan is currently running."]

    @pytest.mark.asyncio
    async def test_cancel_running_scan(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT[:2], block=True)
        orch = make_orchestrator(runner=runner)

        task = asyncio.create_task(orch.scan_project())
        await asyncio.wait_for(runner.started.wait(), timeout=5)
        assert await orch.cancel_scan() is True
        state = await task

        assert runner.terminate_calls == 1
        assert state.progress[-1].stage == "cancelled"
        assert state.is_scanning is False
        assert orch.phase is ScanPhase.CANCELLED
        assert rec.terminal() == [EventKind.SCAN_CANCELLED]

    @pytest.mark.asyncio
    async def test_cancel_before_spawn(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        gate = asyncio.Event()
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        orch = make_orchestrator(runner=runner, environment=FakeEnvironment(gate=gate))

        task = asyncio.create_task(orch.scan_project())
        await asyncio.sleep(0)
        assert orch.is_scanning
        assert await orch.cancel_scan() is True
        gate.set()
        state = await task

        assert runner.calls == []
        assert state.progress[-1].stage == "cancelled"
        assert rec.terminal() == [EventKind.SCAN_CANCELLED]

    @pytest.mark.asyncio
    async def test_flag_wins_over_clean_exit(self, logged_in, make_orchestrator, bus):
        """A process that exits 0 after cancel was requested is still cancelled."""
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT, block=True)
        orch = make_orchestrator(runner=runner)

        task = asyncio.create_task(orch.scan_project())
        await asyncio.wait_for(runner.started.wait(), timeout=5)
        orch._cancel_requested = True
        runner.gate.set()
        state = await task

        assert state.progress[-1].stage == "cancelled"
        assert rec.terminal() == [EventKind.SCAN_CANCELLED]

    @pytest.mark.asyncio
    async def test_external_sigterm_is_cancelled(self, logged_in, make_orchestrator, bus):
        rec = Recorder(bus)
        runner = FakeRunner(HAPPY_TRANSCRIPT)
        runner.killed = True
        orch = make_orchestrator(runner=runner)

        state = await orch.scan_project()

        assert state.progress[-1].stage == "cancelled"
        assert rec.terminal() == [EventKind.SCAN_CANCELLED]

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="signal semantics are POSIX-only")
    async def test_cancel_real_process_that_exits_1_on_sigterm(
        self, tmp_path, logged_in, make_orchestrator, bus, notifier
    ):
        script = tmp_path / "trapping_corgea.py"
        script.write_text(TRAPPING_SCANNER)
        command = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
        rec = Recorder(bus)
        first_line = asyncio.Event()
        bus.subscribe(EventKind.SCAN_OUTPUT, lambda _state: first_line.set())
        orch = make_orchestrator(
            runner=ProcessRunner(tmp_path, kill_grace=5.0),
            environment=FakeEnvironment(command=command),
        )

        task = asyncio.create_task(orch.scan_project())
        await asyncio.wait_for(first_line.wait(), timeout=15)
        assert await orch.cancel_scan() is True
        state = await asyncio.wait_for(task, timeout=15)

        assert orch.phase is ScanPhase.CANCELLED
        assert state.progress[-1].stage == "cancelled"
        assert state.error is None
        assert rec.terminal() == [EventKind.SCAN_CANCELLED]
        assert EventKind.SCAN_ERROR not in rec.kinds()
        assert notifier.of("error") == []
