"""Shared CLI helpers."""

import json
from contextlib import contextmanager
from typing import Any, Iterator, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape

from ..config import ScanConfig
from ..exceptions import AppError
from ..persistence import ComplianceDB

console = Console()


def get_config(ctx: typer.Context) -> ScanConfig:
    """Config resolved by the root callback (defaults when invoked directly)."""
    obj = ctx.ensure_object(dict)
    config = obj.get("config")
    if config is None:
        config = ScanConfig()
        obj["config"] = config
    return config


@contextmanager
def open_db(config: ScanConfig) -> Iterator[ComplianceDB]:
    with ComplianceDB(config.db_path) as db:
        yield db


def print_json(data: Any) -> None:
    """Machine-readable JSON output (bypasses rich markup)."""
    print(json.dumps(data, indent=2, default=str))


def fail(error: AppError, json_output: bool = False) -> NoReturn:
    """Report a typed error as ``[CODE] message`` and exit 1."""
    if json_output:
        print_json(error.to_json())
    else:
        console.print(f"[red]Error:[/red] {escape(str(error))}", highlight=False)
    raise typer.Exit(1)


def status_style(status: Optional[str]) -> str:
    return {
        "pass": "green",
        "completed": "green",
        "analyzed": "green",
        "partial": "yellow",
        "running": "yellow",
        "analyzing": "yellow",
        "pending": "dim",
        "fail": "red",
        "failed": "red",
        "needs_human": "magenta",
    }.get(status or "", "white")


def short_ts(ts: Optional[str]) -> str:
    """Trim an ISO timestamp to date + time (no microseconds/timezone)."""
    if not ts:
        return "-"
    if "T" in ts:
        ts = ts.replace("T", " ")
    if "+" in ts:
        ts = ts[: ts.index("+")]
    if "." in ts:
        ts = ts[: ts.index(".")]
    return ts
