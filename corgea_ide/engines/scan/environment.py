"""Locate (and on first use, unpack) what is needed to run the scanner CLI."""

from __future__ import annotations

import asyncio
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

import structlog

from corgea_ide.core.config import Settings
from corgea_ide.exceptions import BootstrapError, PreconditionError

log = structlog.get_logger(__name__)

_ARCHIVE_SUFFIXES = (".zip", ".tar.gz")
CLI_PACKAGE_GLOB = "corgea_cli-*.whl"


def host_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "mac"
    return "linux"


def _python_relpath(platform: str) -> Path:
    if platform == "windows":
        return Path("python.exe")
    return Path("bin") / "python3"


def _join_command(parts: list[str]) -> str:
    if os.name == "nt":
        return subprocess.list2cmdline(parts)
    return shlex.join(parts)


class ScanEnvironment:
    """Resolves the scanner command line.

    Resolution order: an explicit ``cli_command`` from settings; otherwise the
    bundled Python runtime for the host platform (extracted from
    ``<assets>/runtimes/<platform>.zip|.tar.gz`` into ``<home>/runtimes`` on
    first use) running the bundled CLI wheel from ``<assets>/packages/cli``.
    """

    def __init__(self, settings: Settings, platform: str | None = None) -> None:
        self._settings = settings
        self._platform = platform or host_platform()
        self._command: str | None = None

    @property
    def command(self) -> str | None:
        return self._command

    async def ensure(self) -> str:
        """Return the scanner command, bootstrapping the runtime if needed.

        Raises :class:`PreconditionError` when something bundled is missing
        and :class:`BootstrapError` when preparing it fails.
        """
        if self._command is not None:
            return self._command

        if self._settings.cli_command:
            self._command = self._resolve_override(self._settings.cli_command)
        else:
            python = await self._ensure_runtime()
            package = self._find_cli_package()
            self._command = _join_command([str(python), str(package)])

        log.info("environment.ready", platform=self._platform, command=self._command)
        return self._command

    def _resolve_override(self, command: str) -> str:
        parts = shlex.split(command, posix=os.name != "nt")
        head = parts[0] if parts else ""
        if Path(head).is_file() or shutil.which(head):
            return command
        raise PreconditionError(f"Configured scanner command not found: {head}")

    async def _ensure_runtime(self) -> Path:
        runtime_dir = self._settings.runtimes_dir / self._platform
        python = runtime_dir / _python_relpath(self._platform)
        if python.is_file():
            return python

        archive = self._find_runtime_archive()
        log.info("environment.extracting", archive=str(archive), target=str(runtime_dir))
        try:
            runtime_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.unpack_archive, str(archive), str(runtime_dir))
        except (OSError, ValueError) as exc:
            raise BootstrapError(f"Failed to extract Python runtime: {exc}") from exc

        if not python.is_file():
            raise BootstrapError(f"Python runtime missing after extraction: {python}")
        if os.name != "nt":
            python.chmod(python.stat().st_mode | 0o111)
        return python

    def _find_runtime_archive(self) -> Path:
        base = self._settings.assets_dir / "runtimes"
        for suffix in _ARCHIVE_SUFFIXES:
            candidate = base / f"{self._platform}{suffix}"
            if candidate.is_file():
                return candidate
        raise PreconditionError(f"No bundled Python runtime for platform {self._platform!r}")

    def _find_cli_package(self) -> Path:
        packages = sorted((self._settings.assets_dir / "packages" / "cli").glob(CLI_PACKAGE_GLOB))
        if not packages:
            raise PreconditionError("Corgea CLI package not found in bundled assets")
        return packages[-1]
