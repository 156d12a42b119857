"""Snapshot registration and stand-alone signal scans."""

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from ..exceptions import AppError
from ..persistence import AnalysisDepth, SnapshotStore
from ..scanning import list_candidate_files, select_for_depth
from ..signals import SignalDetector, Signals
from . import app
from ._common import console, fail, get_config, open_db, print_json


@app.command()
def register(
    ctx: typer.Context,
    path: Path = typer.Argument(
        ...,
        help="Extracted repository tree",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    org: str = typer.Option(..., "--org", help="Owning organization id"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (default: directory name)"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """
    Register an already-extracted repository as an [bold]indexed[/bold] snapshot.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance register ./checkout --org acme
    """
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            snapshot = SnapshotStore(db).register(org, str(path), name=name)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(snapshot.to_dict())
        return
    console.print(
        f"[green]Registered[/green] snapshot [bold]{snapshot.id}[/bold] "
        f"({escape(snapshot.name or '')}) for [cyan]{escape(org)}[/cyan]"
    )


@app.command()
def scan(
    ctx: typer.Context,
    path: Path = typer.Argument(
        ...,
        help="Repository tree to scan",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    depth: str = typer.Option(
        AnalysisDepth.FULL.value,
        "--depth",
        "-d",
        help="structure_only | security_relevant | full",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """
    Run the signal detector over a directory without touching the database.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance scan .

      repo-compliance scan ./service --depth security_relevant --json
    """
    config = get_config(ctx)
    resolved_depth = AnalysisDepth.parse(depth)
    if resolved_depth is None:
        console.print(f"[red]Error:[/red] unknown depth {escape(depth)!r}")
        raise typer.Exit(2)

    try:
        files = list_candidate_files(str(path), config)
        selected = select_for_depth(files, resolved_depth.value)
        detector = SignalDetector(config)
        root = str(path)
        signals = Signals(
            auth=detector.scan_for_auth(root, selected),
            encryption=detector.scan_for_encryption(root, selected),
            logging=detector.scan_for_logging(root, selected),
            access_control=detector.scan_for_access_control(root, selected),
            cicd=detector.scan_for_cicd(root, selected),
            secrets_warnings=detector.scan_for_secrets(root, selected),
        )
        signals.scanned_files = detector.scanned_files
        signals.skipped_files = detector.skipped_files
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json({"files": len(files), "signals": signals.to_dict()})
        return
    _output_rich(signals, len(files))


def _output_rich(signals: Signals, file_count: int) -> None:
    table = Table(title="Security Signals", show_lines=False, pad_edge=True)
    table.add_column("Category", style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Confidence")
    table.add_column("Files", justify="right")
    table.add_column("Details", style="dim")

    rows = [
        *signals.auth,
        *signals.access_control,
        *signals.encryption,
        *signals.logging,
        *signals.cicd,
        *signals.secrets_warnings,
    ]
    for s in rows:
        confidence_style = {"high": "green", "medium": "yellow", "low": "red"}[s.confidence.value]
        table.add_row(
            s.category.value,
            s.type,
            f"[{confidence_style}]{s.confidence.value}[/{confidence_style}]",
            str(len(s.evidence)),
            escape(s.details),
        )

    console.print()
    if rows:
        console.print(table)
    else:
        console.print("[yellow]No security signals detected.[/yellow]")
    console.print(
        f"[dim]{file_count} files inventoried, {signals.scanned_files} scanned, "
        f"{signals.skipped_files} skipped[/dim]"
    )
    console.print()
