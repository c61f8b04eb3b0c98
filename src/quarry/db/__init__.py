"""Quarry database layer."""

from quarry.db.connection import Database, transaction
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.schema import initialize
from quarry.db.store import Store
from quarry.db.vectors import CreateIndexParams, IndexDistance, SqliteVecBackend

__all__ = [
    "Database",
    "transaction",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Store",
    "CreateIndexParams",
    "IndexDistance",
    "SqliteVecBackend",
]
