"""Quarry rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from quarry.db.errors import (
    CorpusNotFoundError,
    ExtractorNotFoundError,
    InvalidFilterError,
    NotFoundError,
    SerializationError,
    StoreError,
    UnderlyingStoreError,
)


def err_no_db(db_path: str = ".quarry.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  quarry init"
    )


def err_corpus_not_found(name: str) -> str:
    return (
        f"[red]Error:[/] Corpus '{name}' not found.\n"
        "  Declare it first:  quarry corpus upsert <corpus.yaml>"
    )


def err_extractor_not_found(name: str) -> str:
    return (
        f"[red]Error:[/] Extractor '{name}' is not recorded.\n"
        "  Record it:  quarry extractors record <extractors.yaml>"
    )


def err_bad_file(path: str, reason: str) -> str:
    """A YAML input file could not be parsed into the expected shape."""
    return (
        f"[red]Error:[/] Cannot read '{escape(path)}': {escape(reason)}\n"
        "  Fix the file and re-run the command."
    )


def err_bad_meta(item: str) -> str:
    return (
        f"[red]Error:[/] Invalid --meta value '{escape(item)}'.\n"
        "  Use KEY=VALUE, e.g.  --meta lang=en"
    )


def err_no_workers() -> str:
    return (
        "[red]Error:[/] --assign needs at least one --worker ID.\n"
        "  Example:  quarry coordinate --worker w1 --worker w2"
    )


def err_store(exc: StoreError) -> str:
    """Map a store error to an actionable message."""
    if isinstance(exc, CorpusNotFoundError):
        return err_corpus_not_found(exc.key)
    if isinstance(exc, ExtractorNotFoundError):
        return err_extractor_not_found(exc.key)
    if isinstance(exc, NotFoundError):
        return f"[red]Error:[/] {escape(str(exc))}.\n  Check the id and try again."
    if isinstance(exc, InvalidFilterError):
        return (
            f"[red]Error:[/] {escape(str(exc))}\n"
            "  Filter values must be strings; fix the corpus file and upsert it again."
        )
    if isinstance(exc, SerializationError):
        return (
            f"[red]Error:[/] Stored data is corrupt: {escape(str(exc))}\n"
            "  This is not retryable; inspect the row named above."
        )
    if isinstance(exc, UnderlyingStoreError):
        return (
            f"[red]Error:[/] Database failure: {escape(str(exc))}\n"
            "  Retry the command; if the database is locked, stop other writers first."
        )
    return f"[red]Error:[/] {escape(str(exc))}"
