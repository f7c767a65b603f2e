"""
Report Generator for Authz Probe.

Renders a scan result as:
- Terminal (Rich formatted)
- JSON (for automation; camelCase findings as on the wire)
- Markdown (for issue trackers)
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .models import AttackVector, Finding, ScanResult

logger = logging.getLogger(__name__)


def sorted_findings(findings: List[Finding]) -> List[Finding]:
    """Findings in a stable (endpoint, vector) order for display."""
    return sorted(findings, key=lambda f: (f.endpoint, f.method.value, f.attack_vector.value))


def _confidence_style(confidence: float) -> str:
    if confidence >= 0.95:
        return "bold red"
    if confidence >= 0.85:
        return "red"
    return "yellow"


class ReportGenerator:
    """Generates scan reports in several formats."""

    def __init__(self, output_dir: Optional[str] = None, console: Optional[Console] = None):
        self.output_dir = Path(output_dir) if output_dir else Path("./reports")
        self.console = console or Console()

    def generate_terminal(self, result: ScanResult) -> None:
        """Print a summary table and the findings."""

        self.console.print()
        self.console.print(
            Panel(
                "[bold white]AUTHORIZATION BYPASS SCAN REPORT[/bold white]",
                border_style="blue",
            )
        )

        summary_table = Table(title="Scan Summary", show_header=True, header_style="bold cyan")
        summary_table.add_column("Metric", style="cyan")
        summary_table.add_column("Value", style="white")

        summary_table.add_row("Target", result.target)
        summary_table.add_row("Scan ID", result.scan_id)
        summary_table.add_row(
            "Duration",
            f"{result.duration:.1f}s" if result.duration is not None else "N/A"
        )
        summary_table.add_row("Endpoints", str(result.endpoints_total))
        summary_table.add_row("  Probed", str(result.endpoints_probed))
        summary_table.add_row("  Skipped", str(result.endpoints_skipped))
        summary_table.add_row("Requests", str(result.requests_completed))

        if result.findings:
            summary_table.add_row("Findings", f"[bold red]{len(result.findings)}[/bold red]")
        else:
            summary_table.add_row("Findings", "[bold green]0[/bold green]")

        self.console.print(summary_table)
        self.console.print()

        if not result.findings:
            self.console.print(
                Panel(
                    "[bold green]No findings above the confidence threshold.[/bold green]",
                    border_style="green",
                )
            )
            return

        table = Table(show_header=True, header_style="bold cyan", show_lines=True)
        table.add_column("#", justify="right")
        table.add_column("Endpoint")
        table.add_column("Vector")
        table.add_column("Status", justify="center")
        table.add_column("Confidence", justify="right")
        table.add_column("Evidence")

        for i, finding in enumerate(sorted_findings(result.findings), 1):
            style = _confidence_style(finding.confidence)
            table.add_row(
                str(i),
                f"{finding.method.value} {finding.endpoint}",
                finding.attack_vector.value,
                f"{finding.status_victim} / {finding.status_attacker}",
                f"[{style}]{finding.confidence:.3f}[/{style}]",
                "\n".join(finding.evidence) or "-",
            )

        self.console.print(table)
        self.console.print()
        self.console.print(f"[dim]Report generated at {datetime.now().isoformat()}[/dim]")

    def generate_json(self, result: ScanResult) -> str:
        """Generate JSON report for automation/CI integration."""

        report = {
            "scan_info": {
                "scan_id": result.scan_id,
                "target": result.target,
                "start_time": result.start_time.isoformat(),
                "end_time": result.end_time.isoformat() if result.end_time else None,
                "duration_seconds": result.duration,
                "scanner_version": __version__,
            },
            "summary": {
                "endpoints_total": result.endpoints_total,
                "endpoints_probed": result.endpoints_probed,
                "endpoints_skipped": result.endpoints_skipped,
                "requests_completed": result.requests_completed,
                "total_findings": len(result.findings),
                "by_vector": {
                    vector.value: result.count_by_vector(vector) for vector in AttackVector
                },
            },
            "findings": [
                finding.model_dump(mode="json", by_alias=True) for finding in result.findings
            ],
        }

        return json.dumps(report, indent=2, default=str)

    def generate_markdown(self, result: ScanResult) -> str:
        """Generate Markdown report."""

        lines = [
            "# Authorization Bypass Scan Report",
            "",
            f"**Target:** `{result.target}`  ",
            f"**Scan ID:** {result.scan_id}  ",
            f"**Date:** {result.start_time.strftime('%Y-%m-%d %H:%M:%S')}  ",
            "",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Endpoints probed | {result.endpoints_probed} |",
            f"| Endpoints skipped | {result.endpoints_skipped} |",
            f"| Findings | {len(result.findings)} |",
            "",
        ]

        for finding in sorted_findings(result.findings):
            lines.extend([
                f"## {finding.method.value} {finding.endpoint}",
                "",
                f"**Vector:** {finding.attack_vector.value}  ",
                f"**Status (victim / other):** {finding.status_victim} / {finding.status_attacker}  ",
                f"**Confidence:** {finding.confidence:.3f}  ",
                "",
            ])
            lines.extend(f"- {item}" for item in finding.evidence)
            lines.append("")

        return "\n".join(lines)

    def save_reports(self, result: ScanResult, formats: Optional[List[str]] = None) -> dict:
        """Save reports in specified formats."""

        if formats is None:
            formats = ["json", "markdown"]

        self.output_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        saved = {}

        if "json" in formats:
            path = self.output_dir / f"scan_{result.scan_id}_{timestamp}.json"
            path.write_text(self.generate_json(result))
            saved["json"] = str(path)
            logger.info(f"Saved JSON report: {path}")

        if "markdown" in formats:
            path = self.output_dir / f"scan_{result.scan_id}_{timestamp}.md"
            path.write_text(self.generate_markdown(result))
            saved["markdown"] = str(path)
            logger.info(f"Saved Markdown report: {path}")

        return saved
