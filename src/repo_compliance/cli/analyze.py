"""Analysis run commands: start a run and report its status."""

from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from ..analysis import AnalysisOrchestrator
from ..exceptions import AppError
from ..persistence import AnalysisDepth, AnalysisRun
from . import app
from ._common import console, fail, get_config, open_db, print_json, short_ts, status_style


@app.command()
def analyze(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot to analyze"),
    org: str = typer.Option(..., "--org", help="Organization id owning the snapshot"),
    user: str = typer.Option("cli", "--user", help="Acting user id (recorded in the audit trail)"),
    framework: list[str] = typer.Option(
        ["SOC2"],
        "--framework",
        "-f",
        help="Framework to map (repeatable): SOC2, ISO27001, NIST80053",
    ),
    depth: str = typer.Option(
        AnalysisDepth.SECURITY_RELEVANT.value,
        "--depth",
        "-d",
        help="structure_only | security_relevant | full",
    ),
    wait: bool = typer.Option(False, "--wait", help="Honor --timeout and exit 1 if the run fails"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait with --wait"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """
    Start an analysis run for an indexed snapshot.

    The run executes in this process, so the command returns once it has
    finished and prints its final state. --wait adds --timeout and a
    non-zero exit code when the run fails.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance analyze <snapshot-id> --org acme -f SOC2 -f NIST80053 --wait
    """
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            orchestrator = AnalysisOrchestrator(db, config)
            try:
                result = orchestrator.start_analysis(snapshot_id, framework, depth, org, user)
                if wait:
                    orchestrator.wait_for_run(result.run_id, timeout)
            finally:
                orchestrator.shutdown(wait=True)
            # The worker has finished by now; report its final state
            run = orchestrator.get_analysis_status(result.run_id, org)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(run.to_dict())
    else:
        _output_run(run)
    if wait and run.phase_status.value == "failed":
        raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Analysis run id"),
    org: str = typer.Option(..., "--org", help="Organization id owning the run"),
    json_output: bool = typer.Option(False, "--json", help="Output in machine-readable JSON format"),
):
    """Show the phase, progress and metrics of an analysis run."""
    config = get_config(ctx)
    try:
        with open_db(config) as db:
            orchestrator = AnalysisOrchestrator(db, config)
            try:
                run = orchestrator.get_analysis_status(run_id, org)
            finally:
                orchestrator.shutdown(wait=False)
    except AppError as e:
        fail(e, json_output)

    if json_output:
        print_json(run.to_dict())
    else:
        _output_run(run)


def _output_run(run: AnalysisRun) -> None:
    style = status_style(run.phase_status.value)
    table = Table(title=f"Analysis Run {run.id}", show_header=False, pad_edge=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Snapshot", run.snapshot_id)
    table.add_row("Status", f"[{style}]{run.phase_status.value}[/{style}]")
    table.add_row("Phase", escape(run.phase or "-"))
    table.add_row("Progress", f"{run.progress}%")
    table.add_row("Frameworks", ", ".join(run.frameworks))
    table.add_row("Depth", run.analysis_depth.value)
    table.add_row("Files analyzed", str(run.files_analyzed))
    table.add_row("Findings", str(run.findings_generated))
    table.add_row("Started", short_ts(run.started_at))
    table.add_row("Completed", short_ts(run.completed_at))
    if run.error_message:
        table.add_row("Error", f"[red]{escape(run.error_message)}[/red]")

    console.print()
    console.print(table)
    console.print()
