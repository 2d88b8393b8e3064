"""Spawn and supervise the scanner process.

The command runs through the shell in its own session so the whole tree
(shell, interpreter, anything the scanner forks) can be torn down on cancel.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import os
import shlex
import signal
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger(__name__)

OutputCallback = Callable[[str, str], None]

_CHUNK_SIZE = 4096
_KILL_SIGNALS = frozenset({signal.SIGTERM, getattr(signal, "SIGKILL", signal.SIGTERM)})
REDACTED = "***"


class ProcessOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ProcessResult:
    outcome: ProcessOutcome
    exit_code: int | None = None
    output: str = ""
    signal: int | None = None
    error: str | None = None

    @property
    def terminated_by_signal(self) -> bool:
        return self.signal is not None


def quote_args(args: Sequence[str]) -> str:
    if os.name == "nt":
        return subprocess.list2cmdline(list(args))
    return shlex.join(args)


def classify(returncode: int, cancel_requested: bool) -> tuple[ProcessOutcome, int | None]:
    """Map an exit status to an outcome: signal first, then the flag, then the code."""
    if returncode < 0 and -returncode in _KILL_SIGNALS:
        return ProcessOutcome.CANCELLED, -returncode
    if cancel_requested:
        return ProcessOutcome.CANCELLED, None
    if returncode == 0:
        return ProcessOutcome.SUCCEEDED, None
    return ProcessOutcome.FAILED, None


class ProcessRunner:
    """Runs one process at a time in *cwd* and can kill its whole tree."""

    def __init__(
        self,
        cwd: Path,
        *,
        kill_grace: float = 3.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self._cwd = cwd
        self._kill_grace = kill_grace
        self._env = env
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        on_output: OutputCallback | None = None,
        cancel_requested: Callable[[], bool] = lambda: False,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        """Run ``command args`` to completion and classify how it ended.

        *on_output* receives ``(chunk, stream)`` for every decoded chunk, in
        arrival order per stream. Values in *secrets* are replaced in the
        captured output and in the logged command line.
        """
        cmdline = f"{command} {quote_args(args)}" if args else command
        shown = _redact(cmdline, secrets)
        captured: list[str] = []

        try:
            proc = await asyncio.create_subprocess_shell(
                cmdline,
                cwd=str(self._cwd),
                env=self._env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            outcome = ProcessOutcome.CANCELLED if cancel_requested() else ProcessOutcome.FAILED
            log.warning("process.spawn_failed", command=shown, error=str(exc), outcome=outcome.value)
            return ProcessResult(outcome=outcome, error=str(exc))

        self._proc = proc
        log.info("process.spawned", pid=proc.pid, command=shown, cwd=str(self._cwd))
        try:
            if cancel_requested():
                # cancelled while spawning
                await self.terminate_tree()
            await asyncio.gather(
                self._pump(proc.stdout, "stdout", on_output, captured, secrets),
                self._pump(proc.stderr, "stderr", on_output, captured, secrets),
            )
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                await self.terminate_tree()
            self._proc = None

        outcome, sig = classify(returncode, cancel_requested())
        output = "".join(captured)
        log.info(
            "process.exited",
            pid=proc.pid,
            returncode=returncode,
            signal=sig,
            outcome=outcome.value,
        )
        result = ProcessResult(outcome=outcome, exit_code=returncode, output=output, signal=sig)
        if outcome is ProcessOutcome.FAILED:
            result.error = f"Process exited with code {returncode}"
        return result

    async def terminate_tree(self) -> None:
        """Terminate the tracked process and all its descendants.

        Survivors of the grace period are killed. No-op when nothing runs.
        """
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return

        try:
            descendants = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            descendants = []
        log.info("process.terminating", pid=proc.pid, descendants=len(descendants))

        for child in descendants:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass
        try:
            proc.terminate()
        except ProcessLookupError:
            pass

        # the direct child is reaped by asyncio, never by psutil
        async def _wait_parent() -> None:
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
            except asyncio.TimeoutError:
                log.warning("process.kill", pid=proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass

        _, (_, alive) = await asyncio.gather(
            _wait_parent(),
            asyncio.to_thread(psutil.wait_procs, descendants, timeout=self._kill_grace),
        )
        for child in alive:
            log.warning("process.kill", pid=child.pid)
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

    async def _pump(
        self,
        reader: asyncio.StreamReader | None,
        stream: str,
        on_output: OutputCallback | None,
        captured: list[str],
        secrets: Sequence[str],
    ) -> None:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                text = _redact(text, secrets)
                captured.append(text)
                if on_output is not None:
                    on_output(text, stream)
            if not data:
                return


def _redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text
