"""Helpers shared by the CLI commands: config + engine opening with user-facing errors."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from inkwell.cli.errors import err_config, err_no_db, err_schema_too_new
from inkwell.config import ConfigError, InkwellConfig, load_config
from inkwell.db.schema import SchemaVersionError
from inkwell.engine import DEFAULT_DB_NAME, Engine, open_engine

DEFAULT_DB = Path(DEFAULT_DB_NAME)


def load_config_or_exit(console: Console, db: Path) -> InkwellConfig:
    """Load config from the directory holding *db*; exit 1 on a bad config."""
    try:
        return load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_engine_or_exit(console: Console, db: Path, *, must_exist: bool = True) -> Engine:
    """Open the workspace database at *db*; exit 1 if missing or too new."""
    if must_exist and not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    cfg = load_config_or_exit(console, db)
    try:
        return open_engine(db, cfg)
    except SchemaVersionError as exc:
        console.print(err_schema_too_new(exc.found, exc.supported))
        raise typer.Exit(1) from exc
