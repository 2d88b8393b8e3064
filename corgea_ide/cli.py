"""CLI entry point: corgea-ide.

Subcommands:
    corgea-ide login --url https://www.corgea.app   # API-key login (token prompted)
    corgea-ide logout
    corgea-ide scan [--uncommitted] [--json]        # Ctrl-C cancels the scan
    corgea-ide issues [--sca] [--json]
    corgea-ide issue <id>
    corgea-ide uncommitted
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path

import click

from corgea_ide.core.config import DEFAULT_BASE_URL, Settings
from corgea_ide.core.events import EventBus, EventKind
from corgea_ide.core.git import list_uncommitted_files
from corgea_ide.core.logging import debug_log_path, setup_logging
from corgea_ide.core.notify import with_error_handling
from corgea_ide.core.storage import JsonCredentialStore
from corgea_ide.engines.scan.environment import ScanEnvironment
from corgea_ide.engines.scan.models import ScanState
from corgea_ide.engines.scan.orchestrator import ScanOrchestrator
from corgea_ide.exceptions import CorgeaError
from corgea_ide.services import client_factory
from corgea_ide.services.auth_service import AuthService
from corgea_ide.services.config_service import ConfigService
from corgea_ide.services.vulnerability_service import VulnerabilityService

EXIT_CANCELLED = 130


class ClickNotifier:
    """Prints user notices to stderr."""

    def info(self, message: str) -> None:
        click.secho(message, err=True)

    def warning(self, message: str) -> None:
        click.secho(f"Warning: {message}", fg="yellow", err=True)

    def error(self, message: str) -> None:
        click.secho(f"Error: {message}", fg="red", err=True)


@dataclass
class App:
    settings: Settings
    workspace: Path
    store: JsonCredentialStore
    notifier: ClickNotifier = field(default_factory=ClickNotifier)
    bus: EventBus = field(default_factory=EventBus)

    def auth_service(self) -> AuthService:
        return AuthService(
            self.store, self.bus, self.notifier, client_factory(self.settings, self.notifier)
        )

    def config_service(self) -> ConfigService:
        return ConfigService(self.store, client_factory(self.settings, self.notifier))

    def vulnerability_service(self) -> VulnerabilityService:
        return VulnerabilityService(
            self.workspace,
            self.store,
            self.bus,
            self.auth_service(),
            client_factory(self.settings, self.notifier),
            ttl=self.settings.cache_ttl,
        )


def _run(coro):
    """Run *coro*; CorgeaError becomes exit status 1 (the notice was already shown)."""
    try:
        return asyncio.run(coro)
    except CorgeaError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "-w",
    "--workspace",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Workspace folder (default: current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, workspace: Path, verbose: bool) -> None:
    """corgea-ide: run Corgea scans and browse vulnerabilities for a workspace."""
    settings = Settings.from_env()
    store = JsonCredentialStore(
        settings.state_file,
        base_url_override=settings.base_url_override,
        token_override=settings.token_override,
    )
    app = App(settings=settings, workspace=workspace.resolve(), store=store)
    debug_enabled = asyncio.run(app.auth_service().is_debug_mode_enabled())
    setup_logging(
        debug_log_file=debug_log_path(app.workspace) if debug_enabled else None,
        level="DEBUG" if verbose else None,
    )
    ctx.obj = app


@main.command("login")
@click.option("--url", default=DEFAULT_BASE_URL, show_default=True, help="Corgea URL")
@click.option("--token", prompt="API key", hide_input=True, help="Corgea API key")
@click.pass_obj
def login(app: App, url: str, token: str) -> None:
    """Log in with an API key (found on the integrations page in Corgea)."""
    _run(app.auth_service().login_with_api_key(url, token))


@main.command("logout")
@click.pass_obj
def logout(app: App) -> None:
    """Forget the stored URL and API key."""
    _run(app.auth_service().logout())


@main.command("scan")
@click.option("--uncommitted", is_flag=True, help="Scan only uncommitted files")
@click.option("--json", "as_json", is_flag=True, help="Print the final scan state as JSON")
@click.pass_obj
def scan(app: App, uncommitted: bool, as_json: bool) -> None:
    """Run a Corgea scan of the workspace."""
    state = _run(_scan(app, full_scan=not uncommitted, stream=not as_json))
    if state is None:
        sys.exit(1)
    if as_json:
        click.echo(json.dumps(state.to_dict(), indent=2))
    elif state.scan_url:
        click.echo(f"\nResults: {state.scan_url}")

    if state.error:
        sys.exit(1)
    if state.progress and state.progress[-1].stage == "cancelled":
        sys.exit(EXIT_CANCELLED)


async def _scan(app: App, full_scan: bool, stream: bool) -> ScanState | None:
    config_service = app.config_service()
    if await app.store.is_logged_in():
        await config_service.fetch_and_store()

    orchestrator = ScanOrchestrator(
        app.workspace,
        ScanEnvironment(app.settings),
        app.store,
        app.bus,
        app.notifier,
        config_service=config_service,
        kill_grace=app.settings.kill_grace,
    )
    if stream:
        app.bus.subscribe(EventKind.SCAN_OUTPUT, lambda s: click.echo(s.output[-1]))

    loop = asyncio.get_running_loop()
    cancel_tasks: set[asyncio.Task] = set()

    def _on_sigint() -> None:
        click.echo("\nCancelling scan...", err=True)
        task = loop.create_task(orchestrator.cancel_scan())
        cancel_tasks.add(task)
        task.add_done_callback(cancel_tasks.discard)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_sigint)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await orchestrator.scan_project(full_scan=full_scan)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        await app.bus.drain()


@main.command("issues")
@click.option("--sca", is_flag=True, help="Show dependency (SCA) issues instead of code issues")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def issues(app: App, sca: bool, as_json: bool) -> None:
    """List vulnerabilities Corgea found for this workspace."""
    refresh = with_error_handling(app.notifier, "Failed to load vulnerabilities.")(
        app.vulnerability_service().refresh
    )
    report = _run(refresh())

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    if not report.authenticated:
        click.echo("Not logged in. Run: corgea-ide login", err=True)
        sys.exit(1)
    if not report.project_found:
        click.echo("No Corgea project found for this workspace.")
        return

    if sca:
        for group in report.package_groups:
            click.echo(f"{group.name}")
            for vuln in group.vulnerabilities:
                fix = f" (fix: {vuln.package.fix_version})" if vuln.package.fix_version else ""
                click.echo(f"  [{vuln.severity}] {vuln.cve or vuln.id}{fix}")
    else:
        for group in report.file_groups:
            click.echo(f"{group.path}")
            for vuln in group.vulnerabilities:
                name = vuln.classification.name if vuln.classification else ""
                click.echo(
                    f"  {vuln.location.line_number or '-':>5}  [{vuln.urgency}] {name}  ({vuln.id})"
                )


@main.command("issue")
@click.argument("issue_id")
@click.pass_obj
def issue(app: App, issue_id: str) -> None:
    """Show the full details of one issue."""
    fetch = with_error_handling(app.notifier, "Failed to load issue details.")(
        app.vulnerability_service().issue_details
    )
    details = _run(fetch(issue_id))
    click.echo(json.dumps(details, indent=2, default=str))


@main.command("uncommitted")
@click.pass_obj
def uncommitted(app: App) -> None:
    """List uncommitted files, marking those the scanner ignores."""
    files = asyncio.run(list_uncommitted_files(app.workspace))
    if not files:
        click.echo("No uncommitted files.")
        return
    for f in files:
        suffix = "  (ignored)" if f.ignored else ""
        click.echo(f"  {f.status:<9} {f.path}{suffix}")
