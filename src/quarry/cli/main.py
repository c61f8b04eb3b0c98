"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.coordinate import coordinate_cmd, events_cmd, work_cmd
from quarry.cli.corpus import corpus_app, extractors_app
from quarry.cli.ingest import ingest_cmd
from quarry.cli.init import init_cmd
from quarry.cli.worker import worker_app


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry — extraction coordination store.\n\n"
        "  quarry coordinate   Turn outbox events into planned, assigned work.\n"
        "  quarry worker run   Execute the work assigned to one worker."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Quarry — extraction coordination store."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("coordinate")(coordinate_cmd)
app.command("events")(events_cmd)
app.command("work")(work_cmd)
app.add_typer(corpus_app, name="corpus")
app.add_typer(extractors_app, name="extractors")
app.add_typer(worker_app, name="worker")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
