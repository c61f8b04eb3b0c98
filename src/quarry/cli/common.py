"""Shared helpers for CLI commands: config, logging and store handles."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from quarry.cli.errors import err_bad_file, err_no_db, err_store
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.db.connection import Database
from quarry.db.errors import StoreError
from quarry.db.schema import initialize
from quarry.db.store import Store
from quarry.log import setup_logging

console = Console()


def load_cli_config() -> QuarryConfig:
    """Load config and install logging; exit 1 on a bad config file."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        raise typer.Exit(1)
    setup_logging(cfg.logging.level)
    return cfg


def resolve_db(db: Path | None, cfg: QuarryConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


@contextmanager
def open_store(
    db: Path, cfg: QuarryConfig, *, create: bool = False
) -> Iterator[tuple[Store, sqlite3.Connection]]:
    """Yield a Store over *db*; StoreErrors become a rich message and exit 1."""
    if not create and not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    conn = Database(db, busy_timeout=cfg.database.busy_timeout).connect()
    try:
        initialize(conn)
        yield Store(conn), conn
    except StoreError as exc:
        console.print(err_store(exc))
        raise typer.Exit(1)
    finally:
        conn.close()


def read_yaml(path: Path) -> object:
    """Parse a YAML input file; exit 1 with an actionable message on failure."""
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        console.print(err_bad_file(str(path), str(exc)))
        raise typer.Exit(1)
