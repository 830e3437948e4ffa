"""Shared report formatting helpers.

Keeping formatting here prevents drift between the console output and the
JSON file output of the same verification report.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from deliveryscope.core.models import FetchError
from deliveryscope.core.report import Report, report_to_dict


def build_summary_table(report: Report) -> Table:
    """Return the summary block as a two-column rich table."""

    summary = report.summary
    first_contact = summary.first_contact
    window = f"{summary.window_start.isoformat()} - {summary.window_end.isoformat()}"

    table = Table(title="Delivery verification", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Window", window)
    table.add_row("Phone numbers", str(summary.phone_numbers_verified))
    table.add_row("Internal messages", str(summary.total_internal))
    table.add_row("Provider messages", str(summary.total_external))
    table.add_row("Matched", str(summary.matched_count))
    table.add_row("Unmatched", str(summary.unmatched_count))
    table.add_row("Match rate", summary.match_rate)
    table.add_row("Average confidence", summary.average_confidence)
    table.add_row(
        "First contact",
        f"{first_contact.matched}/{first_contact.total} matched, "
        f"{first_contact.unmatched_rate} unmatched",
    )
    if report.first_contact_analysis is not None:
        table.add_row("First contact failure rate", report.first_contact_analysis.failure_rate)
    return table


def render_report(report: Report, errors: List[FetchError], console: Optional[Console] = None) -> None:
    """Print the summary table and any non-fatal fetch errors."""

    console = console or Console()
    console.print(build_summary_table(report))
    if report.analysis is not None and report.analysis.unmatched_by_classification:
        console.print("[bold]Unmatched by type[/bold]")
        for key, group in report.analysis.unmatched_by_classification.items():
            console.print(f"  {key}: {group.count}")
    for error in errors:
        console.print(f"[yellow]Fetch error[/yellow] {error.identifier}: {error.error}")


def report_payload(report: Report, errors: List[FetchError]) -> Dict[str, Any]:
    return {
        "success": True,
        "report": report_to_dict(report),
        "errors": [{"identifier": e.identifier, "error": e.error, "success": False} for e in errors],
    }


def write_report(report: Report, errors: List[FetchError], path: str) -> None:
    """Write the full report as JSON, creating parent directories."""

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(report_payload(report, errors), handle, indent=2)
