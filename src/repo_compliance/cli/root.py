"""Root callback: global options shared by every subcommand."""

from pathlib import Path
from typing import Optional

import typer

from ..config import load_config
from ..exceptions import ConfigurationError
from ..logging_config import setup_logging
from . import app
from ._common import console, fail


@app.callback(invoke_without_command=True)
def root(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "-c",
        "--config",
        help="Configuration file (TOML)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database path (default: .repo-compliance/compliance.db)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
    version: bool = typer.Option(False, "--version", help="Show version and exit", is_eager=True),
):
    """
    Scan extracted repository snapshots for security signals and grade them
    against compliance framework controls.

    [bold cyan]Examples:[/bold cyan]

      repo-compliance scan ./my-repo

      repo-compliance register ./my-repo --org acme

      repo-compliance analyze <snapshot-id> --org acme --framework SOC2 --wait
    """
    from .. import __version__

    if version:
        console.print(
            f"[bold cyan]Repo Compliance[/bold cyan] version [green]{__version__}[/green]"
        )
        raise typer.Exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)

    try:
        resolved = load_config(config_file=config, db_path=db, verbose=verbose, quiet=quiet)
    except ConfigurationError as e:
        fail(e)

    setup_logging(
        verbose=resolved.verbosity == "verbose",
        quiet=resolved.verbosity == "quiet",
        log_file=resolved.log_file,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = resolved
