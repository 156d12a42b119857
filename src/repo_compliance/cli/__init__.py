"""CLI entry point: registers all subcommands."""

import typer

from .. import __version__
from ._common import console

app = typer.Typer(
    name="repo-compliance",
    help="Repo Compliance - map repository security signals to SOC2, ISO 27001 and NIST 800-53 controls",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


# Import subcommands to register them
from .root import root as _root_callback  # noqa: F401, E402
from .scan import register as _register, scan as _scan  # noqa: F401, E402
from .analyze import analyze as _analyze, status as _status  # noqa: F401, E402
from .findings import (  # noqa: F401, E402
    findings as _findings,
    purge as _purge,
    review as _review,
    summary as _summary,
)


def main() -> None:
    app()


__all__ = ["app", "main", "console", "__version__"]
