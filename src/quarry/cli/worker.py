"""quarry worker — execute assigned work."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import console, load_cli_config, open_store, resolve_db
from quarry.extract.worker import ExtractionWorker

worker_app = typer.Typer(help="Run extraction workers.", no_args_is_help=True)


@worker_app.command("run")
def worker_run_cmd(
    worker_id: Annotated[str, typer.Option("--worker-id", "-w", help="This worker's id.")],
    loop: Annotated[
        bool,
        typer.Option("--loop", help="Keep polling for new work until interrupted."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: database.path from config)."),
    ] = None,
) -> None:
    """Run the work currently assigned to WORKER_ID (once, or with --loop forever)."""
    cfg = load_cli_config()
    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        worker = ExtractionWorker(store, worker_id, config=cfg)
        if loop:
            try:
                stats = worker.run()
            except KeyboardInterrupt:
                stats = worker.stats
        else:
            stats = worker.run_once()

    colour = "red" if stats.failed else "green"
    console.print(
        f"  [{colour}]✓[/] worker '{worker_id}': "
        f"{stats.completed} completed, {stats.failed} failed"
    )
    if stats.failed:
        raise typer.Exit(1)
