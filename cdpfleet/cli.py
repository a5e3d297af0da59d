import asyncio
import json
import os
import re
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cdpfleet import __version__
from cdpfleet.browser.models import (
    AgentDescriptor,
    CaptureArtifact,
    ExtractStats,
    ExtractText,
    Navigate,
    Outcome,
    Report,
)
from cdpfleet.config import (
    Settings,
    agents_from_ports,
    default_agents,
    load_agents_file,
    parse_agent_option,
)
from cdpfleet.errors import InvalidConfiguration
from cdpfleet.logging_config import setup_logging

console = Console()
err_console = Console(stderr=True)

# exit status when the run could not be attempted at all
EXIT_CONFIG_ERROR = 2

TROUBLESHOOTING = [
    "Is the SSH tunnel running? (ssh -N -L 9222:localhost:9222 server)",
    "Is Chrome running on the remote server with --remote-debugging-port?",
    "Check the connection: cdpfleet check {endpoint}",
]


@click.group()
@click.version_option(version=__version__, prog_name="cdpfleet")
@click.option("--log-level", default=None, help="Log level (also: CDPFLEET_LOG_LEVEL)")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write logs to this file")
def main(log_level: Optional[str], log_json: bool, log_file: Optional[str]):
    """cdpfleet - drive remote Chrome instances over CDP, many at once."""
    # agent failures are already shown in the report, so stay quiet by default
    level = log_level or os.environ.get("CDPFLEET_LOG_LEVEL", "ERROR")
    setup_logging(level=level, json_format=log_json or None, log_file=log_file)


@main.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]cdpfleet[/bold cyan] v{__version__}")


def _config_error(error: InvalidConfiguration):
    err_console.print(f"[red]Configuration error:[/red] {escape(str(error))}")
    sys.exit(EXIT_CONFIG_ERROR)


# ==================== run ====================

def resolve_agents(
    config_path: Optional[str],
    agent_specs: List[str],
    ports: List[int],
    url: Optional[str],
) -> List[AgentDescriptor]:
    """Collect agents from the file and options, or fall back to the default fleet."""
    agents: List[AgentDescriptor] = []
    if config_path:
        agents.extend(load_agents_file(config_path))
    for spec in agent_specs:
        agents.append(parse_agent_option(spec, default_url=url))
    if ports:
        agents.extend(agents_from_ports(ports, url or "https://example.com"))
    if not (config_path or agent_specs or ports):
        agents = default_agents()
    return agents


def _artifact_suffix(agent: AgentDescriptor) -> str:
    for step in reversed(agent.steps):
        if isinstance(step, CaptureArtifact):
            return ".jpg" if step.image_type == "jpeg" else ".png"
    return ".bin"


def artifact_stem(name: str) -> str:
    """File-safe stem for an agent name; never leaves the artifact directory."""
    stem = re.sub(r"[^\w.-]", "_", name).strip(".")
    return stem or "agent"


def save_artifacts(report: Report, agents: List[AgentDescriptor], artifact_dir: Path) -> List[Path]:
    """Write in-memory artifacts of successful agents to <dir>/<agent><ext>."""
    try:
        artifact_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        err_console.print(f"[yellow]Could not create {escape(str(artifact_dir))}:[/yellow] {escape(str(e))}")
        return []
    saved = []
    for agent, outcome in zip(agents, report.outcomes):
        if outcome.ok and outcome.artifact and "artifact_path" not in outcome.payload:
            path = artifact_dir / f"{artifact_stem(agent.name)}{_artifact_suffix(agent)}"
            try:
                path.write_bytes(outcome.artifact)
            except OSError as e:
                err_console.print(f"[yellow]Could not save {escape(str(path))}:[/yellow] {escape(str(e))}")
                continue
            saved.append(path)
    return saved


def render_report(report: Report):
    table = Table(title="Results")
    table.add_column("Agent", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Result")
    table.add_column("Time", justify="right", style="dim")

    for outcome in report.outcomes:
        if outcome.ok:
            detail = escape(outcome.payload.get("title") or "")
            size = outcome.payload.get("artifact_size")
            if size is not None:
                detail = f"{detail} [dim]({size} bytes)[/dim]"
            status = "[green]✓[/green]"
        else:
            detail = f"[red]{escape(outcome.error)}[/red]"
            status = "[red]✗[/red]"
        table.add_row(escape(outcome.agent_name), status, detail, f"{outcome.duration_ms:.0f}ms")

    console.print(table)

    summary = report.summary
    console.print(
        f"\n[green]{summary.success_count} succeeded[/green], "
        f"[red]{summary.failure_count} failed[/red] of {summary.total}"
    )
    console.print(f"Total time: {summary.elapsed_ms:.0f}ms")
    sequential_ms = sum(o.duration_ms for o in report.outcomes)
    if summary.total > 1 and summary.elapsed_ms > 0:
        console.print(f"[dim]Parallel speedup: ~{sequential_ms / summary.elapsed_ms:.1f}x vs sequential[/dim]")


@main.command()
@click.option("--config", "-c", "config_path", default=None, type=click.Path(dir_okay=False),
              help="JSON agents file")
@click.option("--agent", "-a", "agent_specs", multiple=True,
              help="Agent as NAME=ENDPOINT[=URL], repeatable")
@click.option("--port", "-p", "ports", type=int, multiple=True,
              help="Local CDP port, one agent per port, repeatable")
@click.option("--url", default=None, help="Target URL for --port agents and --agent specs without one")
@click.option("--timeout", type=float, default=None,
              help="Per-agent time limit in seconds (also: CDPFLEET_TIMEOUT)")
@click.option("--artifact-dir", default=None, type=click.Path(file_okay=False),
              help="Directory for screenshots (also: CDPFLEET_ARTIFACT_DIR)")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def run(config_path, agent_specs, ports, url, timeout, artifact_dir, as_json):
    """Run all agents concurrently and report per-agent outcomes."""
    from cdpfleet.orchestrator import Orchestrator, validate
    from cdpfleet.browser.provider import PlaywrightProvider

    try:
        settings = Settings.from_env()
        agents = resolve_agents(config_path, list(agent_specs), list(ports), url)
        validate(agents)
        timeout = timeout if timeout is not None else settings.timeout
        directory = Path(artifact_dir) if artifact_dir else settings.artifact_dir
        orchestrator = Orchestrator(PlaywrightProvider(), timeout=timeout, artifact_dir=directory)
    except InvalidConfiguration as e:
        _config_error(e)

    if not as_json:
        console.print(Panel.fit(
            "[bold cyan]Multi-Agent Parallel Execution[/bold cyan]\n"
            f"[dim]{len(agents)} agent(s)[/dim]",
            border_style="cyan"
        ))
        for agent in agents:
            console.print(f"[dim]{escape(f'[{agent.name}]')} {agent.endpoint} → {agent.target_url or '-'}[/dim]")
        console.print()

        def on_outcome(index: int, outcome: Outcome):
            if outcome.ok:
                console.print(f"{escape(f'[{outcome.agent_name}]')} [green]✓[/green] Completed: {escape(outcome.payload.get('title', ''))}")
            else:
                console.print(f"{escape(f'[{outcome.agent_name}]')} [red]✗[/red] Error: {escape(outcome.error)}")

        orchestrator.add_outcome_callback(on_outcome)

    try:
        report = asyncio.run(orchestrator.run(agents))
    except InvalidConfiguration as e:
        _config_error(e)

    saved = save_artifacts(report, agents, directory) if directory else []

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    console.print()
    render_report(report)
    for path in saved:
        console.print(f"[dim]Saved {path}[/dim]")


# ==================== probe ====================

@main.command()
@click.option("--endpoint", "-e", default=None, help="CDP endpoint (default: CDP_URL or http://localhost:9222)")
@click.option("--url", default="https://example.com", show_default=True, help="Page to open")
@click.option("--output", "-o", default="example.png", show_default=True,
              type=click.Path(dir_okay=False), help="Screenshot file")
@click.option("--timeout", type=float, default=None, help="Time limit in seconds")
def probe(endpoint: Optional[str], url: str, output: str, timeout: Optional[float]):
    """Walk one remote browser through a sample session."""
    from cdpfleet.browser.provider import PlaywrightProvider
    from cdpfleet.browser.unit import ExecutionUnit

    try:
        settings = Settings.from_env()
        agent = AgentDescriptor(
            name="probe",
            endpoint=endpoint or settings.cdp_url,
            steps=(
                Navigate(url=url),
                ExtractText(selector="h1", key="heading"),
                CaptureArtifact(path=output),
                ExtractStats(),
            ),
        )
        timeout = timeout if timeout is not None else settings.timeout
        if timeout is not None and timeout <= 0:
            raise InvalidConfiguration(f"timeout must be positive, got {timeout}")
    except InvalidConfiguration as e:
        _config_error(e)

    console.print(f"Connecting to remote browser at: {agent.endpoint}")

    async def _probe():
        provider = PlaywrightProvider()
        try:
            unit = ExecutionUnit(agent, provider, timeout=timeout)
            return unit, await unit.run()
        finally:
            try:
                await provider.stop()
            except Exception as e:
                err_console.print(f"[yellow]Error stopping Playwright:[/yellow] {escape(str(e))}")

    unit, outcome = asyncio.run(_probe())

    if not outcome.ok:
        console.print(f"[red]✗ Error:[/red] {escape(outcome.error)}")
        console.print("\n[bold]Troubleshooting:[/bold]")
        for i, hint in enumerate(TROUBLESHOOTING, 1):
            console.print(f"{i}. {hint.format(endpoint=agent.endpoint)}")
        sys.exit(1)

    payload = outcome.payload
    console.print("[green]✓[/green] Connected successfully")
    if unit.browser_version:
        console.print(f"Browser version: {unit.browser_version}")

    table = Table(title="Page Info", show_header=False, box=None)
    table.add_column("Label", style="dim")
    table.add_column("Value")
    table.add_row("Title", escape(str(payload.get("title", ""))))
    table.add_row("Heading", escape(str(payload.get("texts", {}).get("heading", ""))))
    for key, value in (payload.get("stats") or {}).items():
        table.add_row(key.capitalize(), str(value))
    console.print(table)

    console.print(f"[green]✓[/green] Screenshot saved to {payload.get('artifact_path', output)}")
    console.print(f"[green]✓[/green] Done in {outcome.duration_ms:.0f}ms")


# ==================== check ====================

@main.command()
@click.argument("endpoints", nargs=-1)
@click.option("--timeout", type=float, default=5.0, show_default=True, help="HTTP timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
def check(endpoints, timeout: float, as_json: bool):
    """Check that CDP endpoints answer on /json/version."""
    from cdpfleet.browser.health import check_endpoints, version_url

    try:
        endpoints = list(endpoints) or [Settings.from_env().cdp_url]
        for endpoint in endpoints:
            version_url(endpoint)
    except InvalidConfiguration as e:
        _config_error(e)

    results = asyncio.run(check_endpoints(endpoints, timeout=timeout))

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        table = Table(title="CDP Endpoints")
        table.add_column("Endpoint", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Browser")
        table.add_column("Detail", style="dim")
        for result in results:
            if result.reachable:
                table.add_row(result.endpoint, "[green]✓[/green]", result.browser, result.websocket_url)
            else:
                table.add_row(result.endpoint, "[red]✗[/red]", "", escape(result.error or ""))
        console.print(table)

    if not all(r.reachable for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
