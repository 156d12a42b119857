"""Findings commands: list, summarize, review and purge."""

from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from ..exceptions import AppError
from ..persistence import (
    FindingFilters,
    FindingReview,
    FindingsPage,
    FindingsStore,
    FindingsSummary,
    HumanOverride,
)
from . import app
from ._common import console, fail, get_config, open_db, print_json, status_style


@app.command()
def findings(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot whose findings to list"),
    org: str = typer.Option(..., "--org", help="Organization id owning the snapshot"),
    status: Optional[str] = typer.Option(None, "--status", help="pass | partial | fail | ..."),
    framework: Optional[str] = typer.Option(None, "--framework", "-f", help="SOC2 | ISO27001 | NIST80053"),
    confidence: Optional[str] = typer.Option(None, "--confidence", help="high | medium | low"),
    control: Optional[str] = typer.Option(None, "--control", help="Control id, e.g. CC6.1"),
    page: int = typer.Option(1, "--page", min=1, help="Page number"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Page size (max 100)"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """
    List a snapshot's findings, newest first.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance findings <snapshot-id> --org acme --status fail
    """
    config = get_config(ctx)
    filters = FindingFilters(
        page=page,
        limit=limit,
        status=status,
        confidence_level=confidence,
        framework=framework,
        control_id=control,
    )
    try:
        with open_db(config) as db:
            result = FindingsStore(db, config=config).get_findings(snapshot_id, org, filters)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(result.to_dict())
    else:
        _output_page(result)


@app.command()
def summary(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot to summarize"),
    org: str = typer.Option(..., "--org", help="Organization id owning the snapshot"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """Count findings by status, framework and confidence."""
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            result = FindingsStore(db, config=config).get_findings_summary(snapshot_id, org)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(result.to_dict())
    else:
        _output_summary(result)


@app.command()
def review(
    ctx: typer.Context,
    finding_id: str = typer.Argument(..., help="Finding to review"),
    org: str = typer.Option(..., "--org", help="Organization id owning the finding"),
    user: str = typer.Option(..., "--user", help="Reviewer user id"),
    status: Optional[str] = typer.Option(None, "--status", help="New status"),
    reason: Optional[str] = typer.Option(
        None, "--reason", help="Record a human override with this justification"
    ),
    evidence: Optional[str] = typer.Option(None, "--evidence", help="Supporting evidence for the override"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """
    Review a finding; with --reason the change is stored as a human override.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance review <finding-id> --org acme --user alice --status pass --reason "MFA via IdP"
    """
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            store = FindingsStore(db, config=config)
            override = None
            if reason is not None:
                if status is None:
                    console.print("[red]Error:[/red] --reason requires --status")
                    raise typer.Exit(2)
                existing = store.get_finding_by_id(finding_id, org)
                override = HumanOverride(
                    original_status=existing.status.value,
                    new_status=status,
                    reason=reason,
                    evidence=evidence,
                )
            updated = store.review_finding(
                finding_id, org, user, FindingReview(status=status, human_override=override)
            )
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(updated.to_dict())
        return
    style = status_style(updated.status.value)
    console.print(
        f"Finding [bold]{updated.id}[/bold] ({escape(updated.control_id)}) is now "
        f"[{style}]{updated.status.value}[/{style}]"
    )


@app.command()
def purge(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot whose findings to delete"),
    org: str = typer.Option(..., "--org", help="Organization id owning the snapshot"),
    user: str = typer.Option("cli", "--user", help="Acting user id (recorded in the audit trail)"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """Delete every finding (and generated task) of a snapshot."""
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            deleted = FindingsStore(db, config=config).delete_snapshot_findings(snapshot_id, org, user)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json({"snapshot_id": snapshot_id, "deleted": deleted})
    else:
        console.print(f"[green]Deleted[/green] {deleted} findings for snapshot {snapshot_id}")


def _output_page(result: FindingsPage) -> None:
    if not result.findings:
        console.print("[yellow]No findings match.[/yellow]")
        return

    table = Table(
        title=f"Findings (page {result.page}, {len(result.findings)} of {result.total})",
        show_lines=False,
        pad_edge=True,
    )
    table.add_column("Control", style="bold")
    table.add_column("Framework", style="cyan")
    table.add_column("Status")
    table.add_column("Confidence")
    table.add_column("Summary")
    table.add_column("ID", style="dim")

    for f in result.findings:
        style = status_style(f.status.value)
        table.add_row(
            escape(f.control_id),
            f.framework,
            f"[{style}]{f.status.value}[/{style}]",
            f.confidence_level.value,
            escape(f.summary),
            f.id,
        )

    console.print()
    console.print(table)
    console.print()


def _output_summary(result: FindingsSummary) -> None:
    table = Table(title="Findings Summary", show_lines=False, pad_edge=True)
    table.add_column("Group", style="bold")
    table.add_column("Value", style="cyan")
    table.add_column("Count", justify="right")

    for group, counts in (
        ("status", result.by_status),
        ("framework", result.by_framework),
        ("confidence", result.by_confidence),
    ):
        for value, count in sorted(counts.items()):
            table.add_row(group, value, str(count))

    console.print()
    console.print(table)
    console.print(
        f"[bold]{result.total}[/bold] findings, "
        f"[red]{result.critical_count}[/red] critical (fail with high confidence)"
    )
    console.print()
