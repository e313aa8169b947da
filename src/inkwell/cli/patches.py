"""inkwell patches CLI commands.

Commands:
  inkwell patches list              — pending patches (or every patch touching --entity)
  inkwell patches show <id>         — operations and source of one patch
  inkwell patches import <file>     — stage a YAML patch file (auto-applies when confident)
  inkwell patches accept <id>       — apply a pending patch
  inkwell patches reject <id>       — reject a pending patch
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from inkwell.canon.patches import (
    ApplyReport,
    PatchNotFoundError,
    PatchStateError,
    patch_from_dict,
)
from inkwell.cli._shared import DEFAULT_DB, open_engine_or_exit
from inkwell.cli.errors import err_invalid_patch_file, err_patch_not_found, err_patch_resolved
from inkwell.db.models import Patch, operation_to_dict

console = Console()

patches_app = typer.Typer(
    name="patches",
    help="Review canonical patches (list, show, import, accept, reject).",
    add_completion=False,
)

_DbOption = Annotated[Path, typer.Option("--db", help="Path to .inkwell.db.")]


@patches_app.command("list")
def patches_list_cmd(
    entity: Annotated[
        str | None,
        typer.Option("--entity", "-e", help="Show every patch touching this entity."),
    ] = None,
    db: _DbOption = DEFAULT_DB,
) -> None:
    """List pending patches."""
    engine = open_engine_or_exit(console, db)
    try:
        if entity:
            patches = engine.patches.get_patches_for_entity(entity)
            title = f"Patches touching {entity}"
        else:
            patches = engine.patches.get_pending_patches()
            title = "Pending patches"
    finally:
        engine.close()

    if not patches:
        console.print("[dim]No patches.[/]")
        raise typer.Exit(0)

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("Status")
    table.add_column("Ops", justify="right")
    table.add_column("Entities")
    table.add_column("Confidence", justify="right")
    table.add_column("Source", style="dim")
    for patch in patches:
        table.add_row(
            patch.id,
            _status_label(patch.status),
            str(len(patch.operations)),
            ", ".join(patch.entity_ids()),
            f"{patch.confidence:.2f}",
            f"{patch.source.kind}:{patch.source.id}" if patch.source.id else patch.source.kind,
        )
    console.print(table)


@patches_app.command("show")
def patches_show_cmd(
    patch_id: Annotated[str, typer.Argument(help="Patch id.")],
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Show one patch in full."""
    engine = open_engine_or_exit(console, db)
    try:
        patch = engine.patches.get_patch(patch_id)
    finally:
        engine.close()
    if patch is None:
        console.print(err_patch_not_found(patch_id))
        raise typer.Exit(1)
    _print_patch(patch)


@patches_app.command("import")
def patches_import_cmd(
    patch_file: Annotated[Path, typer.Argument(help="YAML patch file.")],
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Stage a patch from a YAML file."""
    try:
        data = yaml.safe_load(patch_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        console.print(err_invalid_patch_file(str(patch_file), str(exc)))
        raise typer.Exit(1) from exc

    engine = open_engine_or_exit(console, db)
    try:
        try:
            patch = patch_from_dict(data, workspace_id=engine.config.workspace.id or None)
            stored, report = engine.patches.submit(patch)
        except (ValueError, sqlite3.IntegrityError) as exc:
            console.print(err_invalid_patch_file(str(patch_file), str(exc)))
            raise typer.Exit(1) from exc
    finally:
        engine.close()

    console.print(f"[green]✓[/] Staged patch [bold]{stored.id}[/] ({len(stored.operations)} ops)")
    if report is not None:
        console.print("  Auto-committed (confidence ≥ threshold).")
        _print_apply_report(report)
    else:
        console.print(f"  Review:  inkwell patches accept {stored.id}")


@patches_app.command("accept")
def patches_accept_cmd(
    patch_id: Annotated[str, typer.Argument(help="Patch id.")],
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Apply a pending patch."""
    engine = open_engine_or_exit(console, db)
    try:
        report = engine.patches.accept(patch_id)
    except PatchNotFoundError as exc:
        console.print(err_patch_not_found(patch_id))
        raise typer.Exit(1) from exc
    except PatchStateError as exc:
        patch = engine.patches.get_patch(patch_id)
        console.print(err_patch_resolved(patch_id, patch.status if patch else "resolved"))
        raise typer.Exit(1) from exc
    finally:
        engine.close()

    console.print(f"[green]✓[/] Accepted {patch_id}")
    _print_apply_report(report)


@patches_app.command("reject")
def patches_reject_cmd(
    patch_id: Annotated[str, typer.Argument(help="Patch id.")],
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Reject a pending patch."""
    engine = open_engine_or_exit(console, db)
    try:
        engine.patches.reject(patch_id)
    except PatchNotFoundError as exc:
        console.print(err_patch_not_found(patch_id))
        raise typer.Exit(1) from exc
    except PatchStateError as exc:
        patch = engine.patches.get_patch(patch_id)
        console.print(err_patch_resolved(patch_id, patch.status if patch else "resolved"))
        raise typer.Exit(1) from exc
    finally:
        engine.close()

    console.print(f"[green]✓[/] Rejected {patch_id}")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _status_label(status: str) -> str:
    return {
        "pending": "[yellow]pending[/]",
        "accepted": "[green]accepted[/]",
        "rejected": "[red]rejected[/]",
    }.get(status, status)


def _print_patch(patch: Patch) -> None:
    console.print(f"[bold]{patch.id}[/]  {_status_label(patch.status)}")
    console.print(f"  Source:     {patch.source.kind} {patch.source.id}".rstrip())
    if patch.source.excerpt:
        console.print(f"  Excerpt:    [dim]{escape(patch.source.excerpt)}[/]")
    console.print(f"  Confidence: {patch.confidence:.2f}  auto-commit: {patch.auto_commit}")
    console.print(f"  Created:    {patch.created_at}")
    if patch.resolved_at:
        console.print(f"  Resolved:   {patch.resolved_at}")
    console.print("  Operations:")
    for i, operation in enumerate(patch.operations):
        console.print(f"    {i}. {escape(json.dumps(operation_to_dict(operation), default=str))}")


def _print_apply_report(report: ApplyReport) -> None:
    console.print(f"  Applied: {report.applied}  |  Skipped: {report.skipped}")
    for warning in report.warnings:
        console.print(f"  [yellow]⚠[/] op {warning.index} ({warning.op}): {warning.message}")
