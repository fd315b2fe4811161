"""Reporting and output formatting using Rich."""

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .auditor import CHECK_ORDER
from .models import (
    AuditClassification,
    AuditReport,
    DomainAuditResult,
    DomainRecord,
    DomainState,
    Phase,
    RunSummary,
)


console = Console()


def state_color(state: DomainState) -> str:
    """Get the color for a lifecycle state."""
    if state is DomainState.COMPLETED:
        return "green"
    if state is DomainState.FAILED:
        return "red"
    if state is DomainState.PENDING:
        return "white"
    return "yellow"


def state_icon(state: DomainState) -> str:
    """Get the icon for a lifecycle state."""
    if state is DomainState.COMPLETED:
        return "[green]✓[/green]"
    if state is DomainState.FAILED:
        return "[red]✗[/red]"
    return "[yellow]○[/yellow]"


def classification_color(classification: AuditClassification) -> str:
    """Get the color for an audit classification."""
    color_map = {
        AuditClassification.FULLY_CONFIGURED: "green",
        AuditClassification.PARTIALLY_CONFIGURED: "yellow",
        AuditClassification.NOT_CONFIGURED: "red",
    }
    return color_map.get(classification, "white")


def check_icon(passed: bool) -> str:
    return "[green]✓[/green]" if passed else "[red]✗[/red]"


def _state_cell(state: DomainState, failed_phase=None) -> Text:
    cell = Text.from_markup(state_icon(state) + " ")
    label = state.value
    if state is DomainState.FAILED and failed_phase is not None:
        label = f"failed ({failed_phase.value})"
    cell.append(label, style=state_color(state))
    return cell


def format_attempts(attempt_counts: dict[str, int]) -> str:
    """Per-phase attempt counts in lifecycle order, e.g. "dns:2 verification:5"."""
    parts = [f"{phase.value}:{attempt_counts[phase.value]}" for phase in Phase if phase.value in attempt_counts]
    return " ".join(parts) or "-"


def create_run_table(summary: RunSummary) -> Table:
    """
    Create a table of per-domain outcomes for a provisioning run.

    Args:
        summary: RunSummary from the pipeline

    Returns:
        Rich Table object
    """
    table = Table(title="Provisioning Summary", show_header=True, header_style="bold cyan")

    table.add_column("Domain", style="bold")
    table.add_column("State")
    table.add_column("Aliases", justify="right")
    table.add_column("Last Error")

    for outcome in summary.outcomes:
        message = outcome.message
        if len(message) > 80:
            message = message[:77] + "..."
        table.add_row(
            outcome.domain,
            _state_cell(outcome.state, outcome.failed_phase),
            str(outcome.alias_count),
            message or "-",
        )

    return table


def create_state_table(records: list[DomainRecord]) -> Table:
    """
    Create a table of stored domain records.

    Args:
        records: Records from the state store

    Returns:
        Rich Table object
    """
    table = Table(title="Stored Provisioning State", show_header=True, header_style="bold cyan")

    table.add_column("Domain", style="bold")
    table.add_column("State")
    table.add_column("Provider ID")
    table.add_column("MX", justify="center")
    table.add_column("TXT", justify="center")
    table.add_column("Aliases", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Attempts")
    table.add_column("Updated")

    for record in records:
        table.add_row(
            record.name,
            _state_cell(record.state, record.failed_phase),
            record.provider_id or "-",
            Text.from_markup(check_icon(record.has_mx_record)),
            Text.from_markup(check_icon(record.has_txt_record)),
            str(len(record.aliases)),
            str(len(record.errors)),
            format_attempts(record.attempt_counts),
            record.updated_at,
        )

    return table


def create_audit_table(report: AuditReport) -> Table:
    """
    Create a table of audit checks per domain.

    Args:
        report: AuditReport from the auditor

    Returns:
        Rich Table object
    """
    table = Table(title="Forwarding Audit", show_header=True, header_style="bold magenta")

    table.add_column("Domain", style="bold")
    table.add_column("Provider", justify="center")
    table.add_column("Verified", justify="center")
    table.add_column("Aliases", justify="center")
    table.add_column("Zone", justify="center")
    table.add_column("TXT", justify="center")
    table.add_column("MX", justify="center")
    table.add_column("Result")

    for result in report.domains:
        cells = [Text.from_markup(check_icon(result.passed(name))) for name in CHECK_ORDER]
        table.add_row(
            result.domain,
            *cells,
            Text(
                result.classification.value,
                style=classification_color(result.classification),
            ),
        )

    return table


def print_run_summary(summary: RunSummary) -> None:
    """
    Print the outcome of a provisioning run.

    Args:
        summary: RunSummary object
    """
    console.print()
    console.print(create_run_table(summary))

    total = len(summary.outcomes)
    console.print()
    console.print(Panel(
        f"[bold]Summary:[/bold]\n"
        f"  Total domains: {total}\n"
        f"  Completed: [green]{summary.completed}[/green]/{total}\n"
        f"  Failed: [red]{summary.failed}[/red]/{total}\n"
        f"  Aliases exported: [cyan]{summary.aliases_exported}[/cyan]",
        title="Statistics",
        style="cyan",
    ))


def print_audit_summary(report: AuditReport) -> None:
    """
    Print the audit table and statistics.

    Args:
        report: AuditReport object
    """
    console.print()
    console.print(create_audit_table(report))

    summary = report.summary
    total = summary["total_domains"]
    console.print()
    console.print(Panel(
        f"[bold]Summary:[/bold]\n"
        f"  Total domains: {total}\n"
        f"  Fully configured: [green]{summary['fully_configured']}[/green]/{total}\n"
        f"  Partially configured: [yellow]{summary['partially_configured']}[/yellow]/{total}\n"
        f"  Not configured: [red]{summary['not_configured']}[/red]/{total}",
        title="Statistics",
        style="magenta",
    ))


def print_audit_details(result: DomainAuditResult) -> None:
    """
    Print every check and issue for one audited domain.

    Args:
        result: DomainAuditResult object
    """
    console.print()
    console.print(Panel(f"[bold]{result.domain}[/bold]", style="cyan"))

    for check in result.checks:
        console.print(f"  {check.name}: {check_icon(check.passed)} ", end="")
        console.print(check.detail or "-", style="green" if check.passed else "red")

    if result.issues:
        console.print()
        for issue in result.issues:
            console.print(f"  [yellow]Issue: {issue}[/yellow]")


def export_audit_report(
    report: AuditReport,
    filename: str,
    fmt: Optional[str] = None,
) -> Path:
    """
    Write the audit report as JSON or CSV.

    Args:
        report: AuditReport object
        filename: Output filename
        fmt: "json" or "csv"; taken from the file extension if not given

    Returns:
        Path to the generated file
    """
    output_path = Path(filename)
    fmt = (fmt or output_path.suffix.lstrip(".") or "json").lower()

    if fmt == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["domain", "classification", "alias_count", *CHECK_ORDER, "issues"])
            for result in report.domains:
                writer.writerow([
                    result.domain,
                    result.classification.value,
                    result.alias_count,
                    *[result.passed(name) for name in CHECK_ORDER],
                    "; ".join(result.issues),
                ])
    elif fmt == "json":
        report_data = report.to_dict()
        report_data["generated_at"] = datetime.now(timezone.utc).isoformat()
        with open(output_path, "w") as f:
            json.dump(report_data, f, indent=2)
    else:
        raise ValueError(f"Unsupported report format: {fmt}")

    console.print()
    console.print(f"[green]Report saved to: {output_path}[/green]")

    return output_path


def print_dry_run_notice() -> None:
    """Print a notice that this is a dry run."""
    console.print()
    console.print(Panel(
        "[bold yellow]DRY RUN MODE[/bold yellow]\n"
        "No changes will be made at the provider or the DNS host, and no state "
        "is saved. Run without --dry-run to apply changes.",
        style="yellow",
    ))


def confirm_action(message: str) -> bool:
    """
    Prompt for user confirmation.

    Args:
        message: The confirmation message

    Returns:
        True if user confirmed, False otherwise
    """
    console.print()
    response = console.input(f"[yellow]{message} (y/N): [/yellow]")
    return response.lower() in ("y", "yes")
