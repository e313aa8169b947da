"""inkwell status command.

Shows workspace overview: database file and schema, store health,
index counts per table, and the pending patch queue.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from inkwell.cli._shared import DEFAULT_DB, open_engine_or_exit
from inkwell.db.migrations import get_schema_version
from inkwell.db.schema import CURRENT_VERSION
from inkwell.engine import Engine

console = Console()


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .inkwell.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show workspace status: database, index and patch queue."""
    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  inkwell init",
                title="[bold]Workspace[/]",
                expand=False,
            )
        )
        raise typer.Exit(0)

    engine = open_engine_or_exit(console, db)
    try:
        _show_workspace_panel(db, engine)
        _show_index_panel(engine)
        _show_patches_panel(engine)
    finally:
        engine.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_workspace_panel(db: Path, engine: Engine) -> None:
    size_mb = db.stat().st_size / (1024 * 1024)
    healthy = engine.repo.check_health()
    workspaces = engine.repo.list_workspaces()

    lines = [
        f"Database:  {db} ({size_mb:.1f} MB)",
        f"Schema:    v{get_schema_version(engine.conn)} (supported: v{CURRENT_VERSION})",
        f"Health:    {'[green]✓ writable[/]' if healthy else '[red]✗ not writable[/]'}",
        f"Model:     {engine.config.embedding.model}",
    ]
    if workspaces:
        for ws in workspaces:
            lines.append(f"Workspace: [bold]{ws.name}[/] [dim]({ws.id})[/]")
    else:
        lines.append("[dim]No workspaces yet.[/]")

    console.print(Panel("\n".join(lines), title="[bold]Workspace[/]", expand=False))


def _show_index_panel(engine: Engine) -> None:
    stats = engine.repo.corpus_stats()
    retrievable = len(engine.repo.list_retrievable_fragments())

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Table", style="bold")
    table.add_column("Rows", justify="right")
    for name, count in stats.items():
        table.add_row(name, f"{count:,}")
    table.add_row("retrievable", f"{retrievable:,}")

    console.print(Panel(table, title="[bold]Index[/]", expand=False))


def _show_patches_panel(engine: Engine) -> None:
    pending = engine.patches.get_pending_patches()
    if not pending:
        body = "[dim]No pending patches.[/]"
    else:
        body = "\n".join(
            [f"Pending: [bold]{len(pending)}[/]"]
            + [f"  {p.id}  ({len(p.operations)} ops, {p.confidence:.2f})" for p in pending[:10]]
        )
    console.print(Panel(body, title="[bold]Patches[/]", expand=False))
