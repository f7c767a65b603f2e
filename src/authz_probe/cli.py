"""
CLI Interface for Authz Probe.

Command-line front end built on Typer and Rich. The scan itself is
configured entirely by a JSON scan request.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .mock_target import MockUserTarget, demo_request
from .models import ScanRequest, ScanResult
from .reporter import ReportGenerator
from .scanner import ScanValidationError, run_scan, validate_request

# Initialize
app = typer.Typer(
    name="authz-probe",
    help="Authorization bypass scanner - compare API responses across identities",
    add_completion=False,
)
console = Console()

VALIDATION_EXIT_CODE = 2
MAX_FINDINGS_EXIT_CODE = 100


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Authz Probe[/bold blue] v{__version__}")
        raise typer.Exit()


def load_request_file(path: Path) -> Dict[str, Any]:
    """Read a scan request from a JSON file."""
    try:
        return json.loads(path.read_text())
    except OSError as e:
        raise typer.BadParameter(f"Cannot read {path}: {e}")
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{path} is not valid JSON: {e}")


def print_validation_error(error: ScanValidationError) -> None:
    """Print every violated field of a rejected request."""
    table = Table(title="Invalid scan request", show_header=True, header_style="bold red")
    table.add_column("Field", style="cyan")
    table.add_column("Problem")

    for violation in error.errors:
        table.add_row(violation["field"], violation["message"])

    console.print(table)


def _execute(
    request: ScanRequest,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScanResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(
            f"Probing {len(request.endpoints)} endpoints...", total=None
        )
        result = asyncio.run(run_scan(request, transport=transport))

        count = len(result.findings)
        if count:
            progress.update(task, description=f"[red]Found {count} findings[/red]")
        else:
            progress.update(task, description="[green]Scan complete - no findings[/green]")

    return result


def _report(result: ScanResult, formats: List[str], output: Optional[str]) -> None:
    reporter = ReportGenerator(output_dir=output, console=console)

    if "terminal" in formats:
        reporter.generate_terminal(result)

    save_formats = [f for f in formats if f != "terminal"]
    if save_formats:
        saved = reporter.save_reports(result, save_formats)
        console.print()
        for fmt, path in saved.items():
            console.print(f"[green]✓[/green] Saved {fmt} report: {path}")


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """
    Authz Probe - Authorization Bypass Scanner

    Replays each endpoint as the victim, the attacker and (optionally) no one,
    and reports responses that look too much alike.
    """
    pass


@app.command()
def scan(
    request_file: Path = typer.Argument(..., help="JSON file containing the scan request"),
    format: List[str] = typer.Option(
        ["terminal"], "--format", "-f",
        help="Output formats: terminal, json, markdown"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-O",
        help="Output directory for saved reports"
    ),
    threshold: Optional[float] = typer.Option(
        None, "--threshold",
        help="Override the confidence threshold (0-1)"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c",
        help="Override the maximum concurrency (1-12)"
    ),
    timeout_ms: Optional[int] = typer.Option(
        None, "--timeout-ms", "-t",
        help="Override the per-request timeout in milliseconds (1000-60000)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable verbose output"
    ),
    debug: bool = typer.Option(
        False, "--debug",
        help="Enable debug output"
    ),
) -> None:
    """
    Scan the endpoints listed in a scan request file.

    Example:
        authz-probe scan request.json --format terminal --format json
    """
    setup_logging(verbose, debug)

    payload = load_request_file(request_file)

    try:
        request = validate_request(payload)
        overrides = {
            key: value
            for key, value in (
                ("speed_gate_threshold", threshold),
                ("max_concurrency", concurrency),
                ("timeout_ms", timeout_ms),
            )
            if value is not None
        }
        if overrides:
            request = validate_request({**request.model_dump(), **overrides})
    except ScanValidationError as e:
        print_validation_error(e)
        raise typer.Exit(VALIDATION_EXIT_CODE)

    console.print()
    console.print(
        Panel(
            "[bold blue]AUTHZ PROBE[/bold blue]\n"
            f"[dim]Target: {request.base_url}[/dim]\n"
            f"[dim]Endpoints: {len(request.endpoints)}[/dim]\n"
            f"[dim]Threshold: {request.speed_gate_threshold}[/dim]",
            border_style="blue",
        )
    )

    try:
        result = _execute(request)
    except KeyboardInterrupt:
        console.print("\n[yellow]Scan interrupted by user[/yellow]")
        raise typer.Exit(130)

    _report(result, format, output)

    # Exit with error code if findings were reported
    if result.findings:
        raise typer.Exit(min(len(result.findings), MAX_FINDINGS_EXIT_CODE))


@app.command()
def demo(
    protected: bool = typer.Option(
        False, "--protected",
        help="Make the mock target reject the attacker identity with 403"
    ),
    unauthenticated: bool = typer.Option(
        True, "--unauthenticated/--no-unauthenticated",
        help="Also probe with no identity material"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable verbose output"
    ),
) -> None:
    """
    Scan the built-in mock vulnerable target.

    The target answers GET /api/mock/users/{id} for any requester.
    """
    setup_logging(verbose)

    attacker_id = "1002"
    target = MockUserTarget(denied_identities=[attacker_id] if protected else None)
    request = validate_request(demo_request(attacker_id, unauthenticated=unauthenticated))

    result = _execute(request, transport=target.transport())
    _report(result, ["terminal"], None)


@app.command()
def version() -> None:
    """Show version information."""
    console.print()
    console.print(
        Panel(
            f"[bold blue]Authz Probe[/bold blue]\n"
            f"Version: {__version__}\n"
            f"Python: {sys.version.split()[0]}",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
