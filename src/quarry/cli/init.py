"""quarry init — create the coordination database."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import console, load_cli_config, open_store, resolve_db
from quarry.db.schema import CURRENT_VERSION


def init_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: database.path from config)."),
    ] = None,
) -> None:
    """Create the database and apply schema migrations (idempotent)."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)
    existed = db_path.exists()
    with open_store(db_path, cfg, create=True):
        pass
    if existed:
        console.print(f"  [green]✓[/] {db_path} is up to date (schema v{CURRENT_VERSION})")
    else:
        console.print(f"  [green]✓[/] {db_path} created (schema v{CURRENT_VERSION})")
