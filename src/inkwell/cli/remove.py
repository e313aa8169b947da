"""inkwell remove — cascade-delete a fragment tree or a whole workspace.

Removing a fragment deletes it and every descendant fragment together with
their embeddings, relationship edges and patch-index rows, in one
transaction. ``--workspace`` tears down a whole workspace the same way.

Usage:
  inkwell remove book-1
  inkwell remove --workspace saga --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from inkwell.canon.cascade import CascadeReport
from inkwell.cli._shared import DEFAULT_DB, open_engine_or_exit
from inkwell.cli.errors import err_fragment_not_found, err_workspace_not_found

console = Console()


def remove_cmd(
    fragment_id: Annotated[
        str | None,
        typer.Argument(help="Root fragment to remove with all of its descendants."),
    ] = None,
    workspace: Annotated[
        str | None,
        typer.Option("--workspace", "-w", help="Remove an entire workspace instead."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .inkwell.db."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a fragment tree (or a workspace) and everything that depends on it."""
    if (fragment_id is None) == (workspace is None):
        console.print("[red]Error:[/] Give either a FRAGMENT_ID or --workspace, not both.")
        raise typer.Exit(1)

    engine = open_engine_or_exit(console, db)
    try:
        if workspace is not None:
            if engine.repo.get_workspace(workspace) is None:
                console.print(err_workspace_not_found(workspace))
                raise typer.Exit(0)
            label = f"workspace [bold]{workspace}[/]"
            scope = (
                f"  Fragments: {len(engine.repo.list_fragments(workspace))}  |  "
                f"Entities: {len(engine.repo.list_entities(workspace_id=workspace))}"
            )
        else:
            if engine.repo.get_fragment(fragment_id) is None:
                console.print(err_fragment_not_found(fragment_id))
                raise typer.Exit(0)
            label = f"fragment [bold]{fragment_id}[/]"
            descendants = engine.cascade.collect_descendants(fragment_id)
            scope = f"  Fragments (incl. descendants): {len(descendants)}"

        console.print(f"\nRemove {label}")
        console.print(scope)
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        if workspace is not None:
            report = engine.cascade.delete_workspace(workspace)
        else:
            report = engine.cascade.delete_cascade(fragment_id)
    finally:
        engine.close()

    console.print(f"\n[green]✓[/] Removed {label}")
    console.print(_summary(report))
    if report.cycles:
        console.print(f"[yellow]⚠[/] {len(report.cycles)} hierarchy cycle(s) were ignored.")


def _summary(report: CascadeReport) -> str:
    counts = {k: v for k, v in report.counts().items() if v}
    if not counts:
        return "  Nothing else was attached."
    return "  " + ", ".join(f"{v} {k.replace('_', ' ')}" for k, v in counts.items())
