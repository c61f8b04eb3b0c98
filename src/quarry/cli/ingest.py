"""quarry ingest — add text content to a corpus."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import console, load_cli_config, open_store, resolve_db
from quarry.cli.errors import err_bad_file, err_bad_meta
from quarry.db.models import Content


def _parse_meta(items: list[str]) -> dict[str, str]:
    meta: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            console.print(err_bad_meta(item))
            raise typer.Exit(1)
        meta[key.strip()] = value
    return meta


def ingest_cmd(
    corpus: Annotated[str, typer.Option("--corpus", "-c", help="Target corpus name.")],
    text: Annotated[
        list[str] | None,
        typer.Option("--text", "-t", help="Literal text to ingest (repeatable)."),
    ] = None,
    file: Annotated[
        list[Path] | None,
        typer.Option("--file", "-f", help="Text file to ingest (repeatable)."),
    ] = None,
    meta: Annotated[
        list[str] | None,
        typer.Option("--meta", "-m", help="Metadata KEY=VALUE applied to every item (repeatable)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: database.path from config)."),
    ] = None,
) -> None:
    """Ingest content; items already in the corpus are skipped."""
    cfg = load_cli_config()
    metadata = _parse_meta(meta or [])

    texts = list(text or [])
    for path in file or []:
        try:
            texts.append(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            console.print(err_bad_file(str(path), str(exc)))
            raise typer.Exit(1)
    if not texts:
        console.print("[yellow]Nothing to ingest.[/] Pass --text or --file.")
        raise typer.Exit(1)

    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        store.corpus_by_name(corpus)
        items = [Content.from_text(corpus, t, dict(metadata)) for t in texts]
        inserted = store.ingest_content(corpus, items)

    skipped = len(items) - len(inserted)
    console.print(f"  [green]✓[/] {len(inserted)} item(s) ingested into '{corpus}'")
    if skipped:
        console.print(f"  [dim]{skipped} item(s) already present, skipped[/]")
