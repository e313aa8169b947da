"""inkwell index — write manuscript files into the semantic index.

Each file becomes one fragment (id = the path as given, unless --id).
Unchanged files are skipped by fingerprint; long files are split into
chunk fragments; every leaf is embedded through the embedding cache.
Embedding failures do not abort the run: the fragment is stored and
reported. Re-running `inkwell index` on an unchanged file embeds only the
leaves still missing a vector. `--force` re-chunks the file and resolves
every leaf again through the embedding cache.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from inkwell.cli._shared import DEFAULT_DB, open_engine_or_exit
from inkwell.cli.errors import (
    err_file_not_found,
    err_no_api_key,
    err_workspace_not_found,
    warn_embeddings_offline,
)
from inkwell.ingest.indexer import IndexReport
from inkwell.rag.llm_client import has_api_key, provider_of

console = Console()


def index_cmd(
    files: Annotated[
        list[Path],
        typer.Argument(help="Text or Markdown files to index."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .inkwell.db."),
    ] = DEFAULT_DB,
    workspace: Annotated[
        str | None,
        typer.Option("--workspace", "-w", help="Workspace id. Defaults to inkwell.yaml."),
    ] = None,
    parent: Annotated[
        str | None,
        typer.Option("--parent", help="Container fragment to file these under (created if missing)."),
    ] = None,
    fragment_id: Annotated[
        str | None,
        typer.Option("--id", help="Fragment id (single file only). Defaults to the path."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-chunk and re-embed even if the content is unchanged."),
    ] = False,
) -> None:
    """Index one or more files into the workspace."""
    if fragment_id and len(files) > 1:
        console.print("[red]Error:[/] --id can only be used with a single file.")
        raise typer.Exit(1)
    for path in files:
        if not path.is_file():
            console.print(err_file_not_found(str(path)))
            raise typer.Exit(1)

    engine = open_engine_or_exit(console, db)
    try:
        model = engine.config.embedding.model
        if not has_api_key(model):
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1)

        ws_id = workspace or engine.config.workspace.id or None
        if ws_id and engine.repo.get_workspace(ws_id) is None:
            console.print(err_workspace_not_found(ws_id))
            raise typer.Exit(1)

        if parent and engine.repo.get_fragment(parent) is None:
            engine.indexer.add_container(parent, parent, workspace_id=ws_id)

        offline = 0
        for path in files:
            content = path.read_text(encoding="utf-8")
            report = engine.indexer.write_fragment(
                fragment_id or path.as_posix(),
                path.stem,
                content,
                parent_id=parent,
                workspace_id=ws_id,
                force=force,
            )
            offline += len(report.failures)
            _print_report(path, report)

        if offline:
            console.print(f"\n{warn_embeddings_offline(offline, model)}")
    finally:
        engine.close()


def _print_report(path: Path, report: IndexReport) -> None:
    if report.status == "unchanged" and not report.failures and not (report.embedded or report.reused):
        console.print(f"[dim]= {path}  unchanged[/]")
        return

    mark = "[green]✓[/]" if report.ok else "[yellow]⚠[/]"
    parts = [f"{report.chunk_total} chunks" if report.chunk_total else "1 fragment"]
    parts.append(f"{report.embedded} embedded")
    if report.reused:
        parts.append(f"{report.reused} from cache")
    if report.pruned_ids:
        parts.append(f"{len(report.pruned_ids)} stale removed")
    if report.failures:
        parts.append(f"{len(report.failures)} failed")
    console.print(f"{mark} {path}  " + ", ".join(parts))
