"""inkwell query — show the passages most relevant to a question."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown

from inkwell.cli._shared import DEFAULT_DB, open_engine_or_exit

console = Console()


def query_cmd(
    text: Annotated[str, typer.Argument(help="Question or search text.")],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .inkwell.db."),
    ] = DEFAULT_DB,
    workspace: Annotated[
        str | None,
        typer.Option("--workspace", "-w", help="Restrict to one workspace."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Passages to consider (default: inkwell.yaml)."),
    ] = None,
    raw: Annotated[
        bool,
        typer.Option("--raw", help="Print the context block as plain Markdown text."),
    ] = False,
) -> None:
    """Retrieve semantically relevant passages for TEXT."""
    engine = open_engine_or_exit(console, db)
    try:
        context = engine.query(text, workspace_id=workspace, top_k=top_k)
    finally:
        engine.close()

    if context.failure is not None:
        console.print(
            f"[yellow]⚠[/] Embeddings offline ({context.failure.reason.value}); no context available."
        )
        return
    if context.is_empty:
        console.print("[dim]No relevant passages.[/]")
        return

    if raw:
        typer.echo(context.text)
    else:
        console.print(Markdown(context.text))
