"""quarry corpus / quarry extractors — declare corpora and record extractors.

Corpus file (YAML)::

    name: docs
    metadata: {owner: search}
    extractor_bindings:
      - extractor_name: minilm
        index_name: docs-embeddings
        filters:
          - {op: eq, field: lang, value: en}

Extractors file (YAML)::

    - name: minilm
      description: MiniLM sentence embeddings
      extractor_type: {type: embedding, dim: 384, distance: cosine}
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_store, read_yaml, resolve_db
from quarry.cli.errors import err_bad_file
from quarry.db.errors import SerializationError
from quarry.db.models import (
    EmbeddingExtractor,
    Eq,
    corpus_from_dict,
    extractor_from_dict,
)

corpus_app = typer.Typer(help="Declare and inspect corpora.", no_args_is_help=True)
extractors_app = typer.Typer(help="Record and inspect extractors.", no_args_is_help=True)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: database.path from config)."),
]


@corpus_app.command("upsert")
def corpus_upsert_cmd(
    file: Annotated[Path, typer.Argument(help="Corpus YAML file.")],
    db: _DbOption = None,
) -> None:
    """Insert or replace a corpus and announce its extractor bindings."""
    cfg = load_cli_config()
    raw = read_yaml(file)
    if not isinstance(raw, dict):
        console.print(err_bad_file(str(file), "expected a mapping"))
        raise typer.Exit(1)
    try:
        corpus = corpus_from_dict(raw)
    except SerializationError as exc:
        console.print(err_bad_file(str(file), str(exc)))
        raise typer.Exit(1)

    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        store.upsert_corpus(corpus)
    console.print(
        f"  [green]✓[/] corpus '{corpus.name}' "
        f"({len(corpus.extractor_bindings)} binding(s) announced)"
    )


@corpus_app.command("list")
def corpus_list_cmd(db: _DbOption = None) -> None:
    """List corpora and their extractor bindings."""
    cfg = load_cli_config()
    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        corpora = store.corpora()

    if not corpora:
        console.print("[dim]No corpora declared.[/]")
        return
    table = Table(title="Corpora")
    table.add_column("Corpus")
    table.add_column("Binding")
    table.add_column("Extractor → Index")
    table.add_column("Filters")
    for corpus in corpora:
        if not corpus.extractor_bindings:
            table.add_row(corpus.name, "-", "-", "-")
        for b in corpus.extractor_bindings:
            filters = ", ".join(
                f"{f.field}{'=' if isinstance(f, Eq) else '!='}{f.value}" for f in b.filters
            )
            table.add_row(corpus.name, b.id, f"{b.extractor_name} → {b.index_name}", filters or "-")
    console.print(table)


@extractors_app.command("record")
def extractors_record_cmd(
    file: Annotated[Path, typer.Argument(help="Extractors YAML file (a list).")],
    db: _DbOption = None,
) -> None:
    """Record extractors (existing ones get new description and input params)."""
    cfg = load_cli_config()
    raw = read_yaml(file)
    if not isinstance(raw, list):
        console.print(err_bad_file(str(file), "expected a list of extractors"))
        raise typer.Exit(1)
    try:
        extractors = [extractor_from_dict(e) for e in raw]
    except SerializationError as exc:
        console.print(err_bad_file(str(file), str(exc)))
        raise typer.Exit(1)

    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        store.record_extractors(extractors)
    console.print(f"  [green]✓[/] {len(extractors)} extractor(s) recorded")


@extractors_app.command("list")
def extractors_list_cmd(db: _DbOption = None) -> None:
    """List recorded extractors."""
    cfg = load_cli_config()
    with open_store(resolve_db(db, cfg), cfg) as (store, _conn):
        extractors = store.list_extractors()

    if not extractors:
        console.print("[dim]No extractors recorded.[/]")
        return
    table = Table(title="Extractors")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Description")
    for e in extractors:
        kind = e.extractor_type
        if isinstance(kind, EmbeddingExtractor):
            type_str = f"embedding ({kind.dim}d, {kind.distance.value})"
        else:
            type_str = "attributes"
        table.add_row(e.name, type_str, e.description)
    console.print(table)
