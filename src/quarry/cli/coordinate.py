"""quarry coordinate / events / work — drive and inspect the outbox and work queue."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_store, resolve_db
from quarry.cli.errors import err_no_workers
from quarry.coordinator import Coordinator
from quarry.db.models import BindingAdded, ContentCreated, WorkState

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: database.path from config)."),
]

_STATE_STYLE = {
    WorkState.PENDING: "yellow",
    WorkState.IN_PROGRESS: "cyan",
    WorkState.COMPLETED: "green",
    WorkState.FAILED: "red",
    WorkState.UNKNOWN: "dim",
}


def coordinate_cmd(
    worker: Annotated[
        list[str] | None,
        typer.Option("--worker", "-w", help="Worker id to assign work to (repeatable)."),
    ] = None,
    assign: Annotated[
        bool,
        typer.Option("--assign/--no-assign", help="Distribute unassigned work after planning."),
    ] = True,
    loop: Annotated[
        bool,
        typer.Option("--loop", help="Keep polling the outbox until interrupted."),
    ] = False,
    db: _DbOption = None,
) -> None:
    """Plan work for pending events and (optionally) assign it to workers."""
    cfg = load_cli_config()
    worker_ids = list(worker or [])
    if assign and loop and not worker_ids:
        console.print(err_no_workers())
        raise typer.Exit(1)

    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        coordinator = Coordinator(store)
        if loop:
            try:
                coordinator.run(worker_ids if assign else None, cfg.worker.poll_interval)
            except KeyboardInterrupt:
                pass
        else:
            coordinator.process_events()
            if assign and worker_ids:
                coordinator.distribute_work(worker_ids)
        stats = coordinator.stats

    console.print(
        f"  [green]✓[/] {stats.events_processed} event(s) processed, "
        f"{stats.work_created} work item(s) planned, "
        f"{stats.work_assigned} assigned"
    )
    if stats.events_skipped:
        console.print(
            f"  [yellow]![/] {stats.events_skipped} event(s) could not be handled and were skipped"
            " (see the log for details)"
        )


def events_cmd(
    all_: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include events already processed."),
    ] = False,
    db: _DbOption = None,
) -> None:
    """Show outbox events (unprocessed only by default)."""
    cfg = load_cli_config()
    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        events = store.outbox.list_events(include_processed=all_)

    if not events:
        console.print("[dim]No events.[/]")
        return
    table = Table(title="Extraction events")
    table.add_column("Id")
    table.add_column("Corpus")
    table.add_column("Payload")
    table.add_column("Processed")
    for event in events:
        payload = event.payload
        if isinstance(payload, BindingAdded):
            desc = f"binding added {payload.binding_id}"
        elif isinstance(payload, ContentCreated):
            desc = f"content created {payload.content_id}"
        else:
            desc = repr(payload)
        processed = (
            datetime.fromtimestamp(event.processed_at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            if event.processed_at is not None
            else "[yellow]pending[/]"
        )
        table.add_row(event.id, event.corpus, desc, processed)
    console.print(table)


def work_cmd(
    worker: Annotated[
        str | None,
        typer.Option("--worker", "-w", help="Only show work assigned to this worker."),
    ] = None,
    state: Annotated[
        str | None,
        typer.Option("--state", "-s", help="Only show work in this state (e.g. Pending)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Show the work queue."""
    cfg = load_cli_config()
    wanted = WorkState.parse(state) if state else None
    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        items = store.jobs.list_work(wanted)
    if worker is not None:
        items = [w for w in items if w.worker_id == worker]

    if not items:
        console.print("[dim]No work.[/]")
        return
    table = Table(title="Work")
    table.add_column("Id")
    table.add_column("Content")
    table.add_column("Extractor → Index")
    table.add_column("Worker")
    table.add_column("State")
    for w in items:
        style = _STATE_STYLE[w.work_state]
        table.add_row(
            w.id,
            w.content_id,
            f"{w.extractor} → {w.index_name}",
            w.worker_id or "-",
            f"[{style}]{w.work_state.value}[/]",
        )
    console.print(table)
