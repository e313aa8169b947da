"""inkwell init — create a workspace database and its config.

Creates, in the target directory:
  .inkwell.db    — workspace database with the current schema
  inkwell.yaml   — workspace config (workspace id/name + tunables)

Re-running is safe: an existing database is migrated forward, an existing
inkwell.yaml is left untouched.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from inkwell.cli.errors import err_schema_too_new
from inkwell.config import write_project_config
from inkwell.db.connection import Database
from inkwell.db.models import Workspace
from inkwell.db.repository import Repository
from inkwell.db.schema import CURRENT_VERSION, SchemaVersionError, initialize
from inkwell.engine import DEFAULT_DB_NAME

console = Console()

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _slugify(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "workspace"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Workspace name. Defaults to the directory name."),
    ] = None,
    workspace_id: Annotated[
        str | None,
        typer.Option("--workspace-id", help="Workspace id. Defaults to a slug of the name."),
    ] = None,
) -> None:
    """Initialize a new inkwell workspace."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    ws_name = name or project_dir.name or "workspace"
    ws_id = workspace_id or _slugify(ws_name)
    db_path = project_dir / DEFAULT_DB_NAME
    existed = db_path.exists()

    conn = Database(db_path).connect()
    try:
        try:
            initialize(conn)
        except SchemaVersionError as exc:
            console.print(err_schema_too_new(exc.found, exc.supported))
            raise typer.Exit(1) from exc
        repo = Repository(conn)
        if repo.get_workspace(ws_id) is None:
            repo.add_workspace(Workspace(id=ws_id, name=ws_name))
    finally:
        conn.close()

    config_path = write_project_config(project_dir, ws_id, ws_name)

    verb = "Updated" if existed else "Created"
    console.print(f"[green]✓[/] {verb} {db_path} (schema v{CURRENT_VERSION})")
    console.print(f"[green]✓[/] Config: {config_path}")
    console.print(f"  Workspace: [bold]{ws_name}[/] [dim]({ws_id})[/]")
    console.print("\n  Next:  inkwell index <file>")
