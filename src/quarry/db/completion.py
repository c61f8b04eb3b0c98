"""Per-content completion markers and the unprocessed-content query.

Markers live inside the content row (``extractor_bindings_state`` JSON,
shape ``{"state": {binding_id: marker}}``) so that the "unprocessed for
binding B" question is answered by one scan of ``content``. Markers are
written with a single ``json_set`` UPDATE that touches only the binding's
key, never the whole document, so bindings completing concurrently on the
same content cannot overwrite each other.
"""

from __future__ import annotations

import sqlite3
import time
from typing import Any

from quarry.db.connection import transaction
from quarry.db.errors import ContentNotFoundError, InvalidFilterError, SerializationError
from quarry.db.models import (
    Content,
    ContentType,
    Eq,
    ExtractorBinding,
    Neq,
    load_json,
)

CONTENT_COLUMNS = "id, corpus_id, text, metadata, content_type, extractor_bindings_state"

# Text rendering of a metadata value, so 2024 compares equal to "2024" and
# true to "true". A missing key or JSON null renders as NULL.
_METADATA_TEXT = (
    "CASE json_type(metadata, ?) "
    "WHEN 'true' THEN 'true' WHEN 'false' THEN 'false' "
    "ELSE CAST(json_extract(metadata, ?) AS TEXT) END"
)


def _json_key_path(prefix: str, key: str) -> str:
    if '"' in key:
        raise InvalidFilterError(f"JSON key may not contain '\"': {key!r}")
    return f'{prefix}."{key}"'


def marker_path(binding_id: str) -> str:
    """JSON path of the completion marker for *binding_id*."""
    return _json_key_path("$.state", binding_id)


def compile_unprocessed_query(
    corpus: str,
    binding: ExtractorBinding,
    content_id: str | None = None,
) -> tuple[str, list[Any]]:
    """Build the SQL selecting content of *corpus* not yet processed by *binding*.

    Filters are conjunctive; ``Eq`` and ``Neq`` compare the text form of a
    metadata value (numbers as written, booleans as ``true``/``false``) with
    a string value. A key missing from a content item's metadata compares
    as NULL and therefore matches neither operator.

    Raises:
        InvalidFilterError: If a filter value is not a string.
    """
    clauses = [
        "corpus_id = ?",
        "COALESCE(CAST(json_extract(extractor_bindings_state, ?) AS INTEGER), 0) < 1",
    ]
    params: list[Any] = [corpus, marker_path(binding.id)]

    if content_id is not None:
        clauses.append("id = ?")
        params.append(content_id)

    for f in binding.filters:
        if isinstance(f, Eq):
            op = "="
        elif isinstance(f, Neq):
            op = "!="
        else:
            raise InvalidFilterError(f"unsupported filter: {f!r}")
        if not isinstance(f.value, str):
            raise InvalidFilterError(
                f"filter value for '{f.field}' must be a string, got {type(f.value).__name__}"
            )
        path = _json_key_path("$", f.field)
        clauses.append(f"{_METADATA_TEXT} {op} ?")
        params.extend([path, path, f.value])

    sql = f"SELECT {CONTENT_COLUMNS} FROM content WHERE " + " AND ".join(clauses) + " ORDER BY rowid"
    return sql, params


class CompletionTracker:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def mark_processed(self, content_id: str, binding_id: str) -> None:
        """Record that *binding_id* has been applied to *content_id*.

        The marker is the current unix time. An existing marker is left as-is,
        so repeated calls are no-ops and a marker never goes back to zero.

        Raises:
            ContentNotFoundError: If the content does not exist.
        """
        path = marker_path(binding_id)
        with transaction(self._conn):
            cur = self._conn.execute(
                """
                UPDATE content
                SET extractor_bindings_state = json_set(extractor_bindings_state, ?, ?)
                WHERE id = ?
                  AND COALESCE(CAST(json_extract(extractor_bindings_state, ?) AS INTEGER), 0) < 1
                """,
                (path, max(1, int(time.time())), content_id, path),
            )
            if cur.rowcount == 0:
                exists = self._conn.execute(
                    "SELECT 1 FROM content WHERE id = ?", (content_id,)
                ).fetchone()
                if exists is None:
                    raise ContentNotFoundError(content_id)

    def find_unprocessed(
        self,
        corpus: str,
        binding: ExtractorBinding,
        content_id: str | None = None,
    ) -> list[Content]:
        """Return content of *corpus* matching *binding* and not yet processed by it."""
        sql, params = compile_unprocessed_query(corpus, binding, content_id)
        rows = self._conn.execute(sql, params).fetchall()
        return [row_to_content(r) for r in rows]


def row_to_content(row: sqlite3.Row) -> Content:
    state = load_json(row["extractor_bindings_state"], "completion state", {})
    try:
        completion = {k: int(v) for k, v in (state.get("state") or {}).items()}
        content_type = ContentType(row["content_type"])
    except (AttributeError, TypeError, ValueError) as exc:
        raise SerializationError(f"corrupt content row '{row['id']}': {exc}") from exc
    return Content(
        id=row["id"],
        corpus=row["corpus_id"],
        text=row["text"],
        metadata=load_json(row["metadata"], "content metadata", {}),
        content_type=content_type,
        completion=completion,
    )
