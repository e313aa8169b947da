"""Inkwell CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from inkwell.cli.index import index_cmd
from inkwell.cli.init import init_cmd
from inkwell.cli.patches import patches_app
from inkwell.cli.query import query_cmd
from inkwell.cli.remove import remove_cmd
from inkwell.cli.status import status_cmd
from inkwell.logging_config import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("inkwell")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"inkwell {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="inkwell",
    help=(
        "Inkwell — local semantic index and canon patch engine for manuscripts.\n\n"
        "  inkwell index    Fingerprint, chunk and embed manuscript files.\n"
        "  inkwell query    Retrieve the passages most relevant to a question.\n"
        "  inkwell patches  Review staged edits to canonical entities."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Inkwell — local semantic index and canon patch engine."""
    configure_logging(verbose=verbose)


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("query")(query_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)
app.add_typer(patches_app, name="patches")


@app.command("version")
def version_cmd() -> None:
    """Show the installed inkwell version."""
    typer.echo(f"inkwell {_installed_version()}")


if __name__ == "__main__":
    app()
