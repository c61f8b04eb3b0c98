"""sqlite-vec vector index collaborator.

The store only needs ``create_index`` (run inside its own transaction) and
``add_embedding``; vector search is not part of the coordination layer.
"""

from __future__ import annotations

import json
import re
import sqlite3
from dataclasses import dataclass
from enum import Enum

from quarry.db.errors import VectorBackendError
from quarry.db.identity import derive_id


class IndexDistance(str, Enum):
    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    DOT = "dot"


# vec0 distance_metric option per IndexDistance; dot product has no vec0 metric.
_VEC0_METRICS = {
    IndexDistance.COSINE: "cosine",
    IndexDistance.EUCLIDEAN: "l2",
}


@dataclass(frozen=True)
class CreateIndexParams:
    index_name: str
    vectordb_index_name: str
    dim: int
    distance: IndexDistance = IndexDistance.COSINE


def index_to_slug(name: str) -> str:
    """Convert a vector index name to a valid table name suffix.

    Names that are already valid slugs map to themselves. Any other name gets
    a short hash of the full name appended, so "docs.emb", "docs-emb" and
    "docs_emb" land in different tables.

    Examples:
        "plain"           -> "plain"
        "docs.embeddings" -> "docs_embeddings_<8 hex>"
    """
    slug = re.sub(r"[^a-z0-9]", "_", name.lower())
    if slug != name:
        slug = f"{slug}_{derive_id(name)[:8]}"
    return slug


def vec_table_name(slug: str) -> str:
    """Return the full vec table name for an index slug."""
    return f"vec_{slug}"


def ensure_vec_table(
    conn: sqlite3.Connection,
    slug: str,
    dimensions: int,
    distance: IndexDistance = IndexDistance.COSINE,
) -> str:
    """Create vec_{slug} if it doesn't already exist. Does not commit.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        slug: Sanitized identifier (use index_to_slug() to generate).
        dimensions: Embedding vector dimensions.
        distance: Distance metric for KNN queries on this table.

    Returns:
        The table name (vec_{slug}).

    Raises:
        ValueError: If the slug or dimensions are invalid, or the table exists
            with a different width.
        VectorBackendError: If the distance has no sqlite-vec metric.
    """
    if not re.fullmatch(r"[a-z0-9_]+", slug):
        raise ValueError(f"Invalid slug '{slug}' — use index_to_slug() to sanitize.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")
    metric = _VEC0_METRICS.get(distance)
    if metric is None:
        raise VectorBackendError(f"distance '{distance.value}' is not supported by sqlite-vec")

    table = vec_table_name(slug)
    existing = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is not None:
        declared = re.search(r"float\[(\d+)\]", existing[0] or "")
        if declared is None or int(declared.group(1)) != dimensions:
            raise ValueError(
                f"{table} already exists with a different width, wanted {dimensions}"
            )
    else:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric={metric})"
        )

    return table


class SqliteVecBackend:
    """Vector index collaborator backed by vec0 tables in the store's own file.

    Shares the store connection so that ``create_index`` joins the caller's
    transaction and is rolled back together with the index metadata.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create_index(self, params: CreateIndexParams) -> str:
        try:
            return ensure_vec_table(
                self._conn,
                index_to_slug(params.vectordb_index_name),
                params.dim,
                params.distance,
            )
        except ValueError as exc:
            raise VectorBackendError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise VectorBackendError(
                f"cannot create vector index '{params.vectordb_index_name}': {exc}"
            ) from exc

    def add_embedding(self, vectordb_index_name: str, rowid: int, embedding: list[float]) -> None:
        """Write *embedding* under *rowid*, replacing any earlier vector. Does not commit."""
        table = vec_table_name(index_to_slug(vectordb_index_name))
        try:
            self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (rowid,))
            self._conn.execute(
                f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
                (rowid, json.dumps(embedding)),
            )
        except sqlite3.Error as exc:
            raise VectorBackendError(
                f"cannot write embedding to '{vectordb_index_name}': {exc}"
            ) from exc
