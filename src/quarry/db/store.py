"""Store facade for all Quarry coordination operations.

Single interface for: corpora, extractors, content ingestion, indexes,
chunks, extracted attributes and timeline events, plus the outbox, the
completion tracker and the job queue. Each mutating operation is one
atomic unit; operations meant to trigger extraction append their outbox
events inside that unit.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any

from quarry.db.completion import CONTENT_COLUMNS, CompletionTracker, row_to_content
from quarry.db.connection import transaction
from quarry.db.errors import (
    BindingNotFoundError,
    ChunkNotFoundError,
    ContentNotFoundError,
    CorpusNotFoundError,
    ExtractorNotFoundError,
    IndexAlreadyExistsError,
    IndexNotFoundError,
    SerializationError,
    VectorBackendError,
)
from quarry.db.jobs import JobQueue
from quarry.db.models import (
    BindingAdded,
    Chunk,
    ChunkWithMetadata,
    Content,
    ContentCreated,
    Corpus,
    Event,
    ExtractedAttributes,
    ExtractionEvent,
    ExtractorBinding,
    ExtractorConfig,
    Index,
    binding_from_dict,
    binding_to_dict,
    connector_from_dict,
    connector_to_dict,
    dump_json,
    extractor_type_from_dict,
    extractor_type_to_dict,
    load_json,
)
from quarry.db.outbox import OutboxLog
from quarry.db.vectors import CreateIndexParams, SqliteVecBackend

logger = logging.getLogger(__name__)


class Store:
    """Coordination store over one open SQLite connection.

    The connection is owned by the caller and must be closed after use.
    Pass the Store explicitly to whatever needs it; there is no global handle.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see quarry.db.schema.initialize).
        """
        self._conn = conn
        self.outbox = OutboxLog(conn)
        self.completion = CompletionTracker(conn)
        self.jobs = JobQueue(conn)
        self.vectors = SqliteVecBackend(conn)

    # ------------------------------------------------------------------
    # Corpora
    # ------------------------------------------------------------------

    def upsert_corpus(self, corpus: Corpus) -> None:
        """Insert or replace *corpus* and announce each of its bindings.

        Connectors, bindings and metadata fully replace any prior values.
        One BindingAdded event is appended per declared binding on every
        upsert, changed or not; consumers deduplicate by binding id.
        """
        bindings = {b.id: binding_to_dict(b) for b in corpus.extractor_bindings}
        with transaction(self._conn):
            self._conn.execute(
                """
                INSERT INTO corpora (name, data_connectors, extractor_bindings, metadata)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    data_connectors = excluded.data_connectors,
                    extractor_bindings = excluded.extractor_bindings,
                    metadata = excluded.metadata
                """,
                (
                    corpus.name,
                    dump_json([connector_to_dict(c) for c in corpus.data_connectors]),
                    dump_json(bindings),
                    dump_json(corpus.metadata),
                ),
            )
            for binding_id in bindings:
                self.outbox.append(
                    ExtractionEvent.new(corpus.name, BindingAdded(corpus.name, binding_id))
                )
        logger.info("upserted corpus '%s' (%d binding(s))", corpus.name, len(bindings))

    def corpus_by_name(self, name: str) -> Corpus:
        row = self._conn.execute(
            "SELECT name, data_connectors, extractor_bindings, metadata FROM corpora WHERE name = ?",
            (name,),
        ).fetchone()
        if row is None:
            raise CorpusNotFoundError(name)
        return _row_to_corpus(row)

    def corpora(self) -> list[Corpus]:
        rows = self._conn.execute(
            "SELECT name, data_connectors, extractor_bindings, metadata FROM corpora ORDER BY name"
        ).fetchall()
        return [_row_to_corpus(r) for r in rows]

    def binding_by_id(self, corpus: str, binding_id: str) -> ExtractorBinding:
        """Return binding *binding_id* declared on *corpus*.

        Raises:
            CorpusNotFoundError: If the corpus does not exist.
            BindingNotFoundError: If the corpus declares no such binding.
        """
        binding = self.corpus_by_name(corpus).binding(binding_id)
        if binding is None:
            raise BindingNotFoundError(binding_id)
        return binding

    # ------------------------------------------------------------------
    # Extractors
    # ------------------------------------------------------------------

    def record_extractors(self, extractors: list[ExtractorConfig]) -> None:
        """Insert extractors; existing ones get a new description and input params."""
        if not extractors:
            return
        with transaction(self._conn):
            self._conn.executemany(
                """
                INSERT INTO extractors (name, description, extractor_type, input_params)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    description = excluded.description,
                    input_params = excluded.input_params
                """,
                [
                    (
                        e.name,
                        e.description,
                        dump_json(extractor_type_to_dict(e.extractor_type)),
                        dump_json(e.input_params),
                    )
                    for e in extractors
                ],
            )

    def get_extractor(self, name: str) -> ExtractorConfig:
        row = self._conn.execute(
            "SELECT name, description, extractor_type, input_params FROM extractors WHERE name = ?",
            (name,),
        ).fetchone()
        if row is None:
            raise ExtractorNotFoundError(name)
        return _row_to_extractor(row)

    def list_extractors(self) -> list[ExtractorConfig]:
        rows = self._conn.execute(
            "SELECT name, description, extractor_type, input_params FROM extractors ORDER BY name"
        ).fetchall()
        return [_row_to_extractor(r) for r in rows]

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def ingest_content(self, corpus: str, items: list[Content]) -> list[str]:
        """Insert *items* into *corpus* and announce the new ones.

        Content already present (same id) is treated as already ingested:
        it is skipped and gets no ContentCreated event. Returns the ids of
        rows actually inserted.
        """
        inserted: list[str] = []
        with transaction(self._conn):
            for item in items:
                cur = self._conn.execute(
                    """
                    INSERT INTO content (id, corpus_id, text, metadata, content_type)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO NOTHING
                    """,
                    (item.id, corpus, item.text, dump_json(item.metadata), item.content_type.value),
                )
                if cur.rowcount == 1:
                    self.outbox.append(ExtractionEvent.new(corpus, ContentCreated(item.id)))
                    inserted.append(item.id)
        logger.info(
            "ingested %d new of %d content item(s) into '%s'", len(inserted), len(items), corpus
        )
        return inserted

    def content_by_id(self, content_id: str, corpus: str | None = None) -> Content:
        sql = f"SELECT {CONTENT_COLUMNS} FROM content WHERE id = ?"
        params: list[Any] = [content_id]
        if corpus is not None:
            sql += " AND corpus_id = ?"
            params.append(corpus)
        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise ContentNotFoundError(content_id)
        return row_to_content(row)

    def find_unprocessed(
        self, corpus: str, binding: ExtractorBinding, content_id: str | None = None
    ) -> list[Content]:
        return self.completion.find_unprocessed(corpus, binding, content_id)

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def create_index(
        self,
        corpus: str,
        extractor_name: str,
        index_name: str,
        params: CreateIndexParams | None = None,
        backend: Any = None,
    ) -> None:
        """Declare *index_name* and, for embedding indexes, create its vector index.

        With *params* the index is an embedding index and
        ``backend.create_index(params)`` runs inside the same transaction
        (defaults to the store's sqlite-vec backend); without, it is an
        attributes index. Re-declaring an identical index is a no-op.

        Raises:
            IndexAlreadyExistsError: If the name is taken with different parameters.
            VectorBackendError: If the backend fails; nothing is persisted.
        """
        index_type = "embedding" if params is not None else "attributes"
        vector_index_name = params.vectordb_index_name if params is not None else None
        wanted = Index(index_name, corpus, extractor_name, index_type, vector_index_name)
        backend = backend if backend is not None else self.vectors

        with transaction(self._conn):
            cur = self._conn.execute(
                """
                INSERT INTO indexes (name, corpus_id, extractor_name, index_type, vector_index_name)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(name) DO NOTHING
                """,
                (index_name, corpus, extractor_name, index_type, vector_index_name),
            )
            if cur.rowcount == 0 and self.get_index(index_name) != wanted:
                raise IndexAlreadyExistsError(index_name)
            if params is not None:
                try:
                    backend.create_index(params)
                except VectorBackendError:
                    raise
                except Exception as exc:
                    raise VectorBackendError(str(exc)) from exc
        logger.info("declared %s index '%s' for corpus '%s'", index_type, index_name, corpus)

    def get_index(self, name: str, corpus: str | None = None) -> Index:
        sql = (
            "SELECT name, corpus_id, extractor_name, index_type, vector_index_name "
            "FROM indexes WHERE name = ?"
        )
        params: list[Any] = [name]
        if corpus is not None:
            sql += " AND corpus_id = ?"
            params.append(corpus)
        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise IndexNotFoundError(name)
        return _row_to_index(row)

    def list_indexes(self, corpus: str | None = None) -> list[Index]:
        sql = "SELECT name, corpus_id, extractor_name, index_type, vector_index_name FROM indexes"
        params: tuple = ()
        if corpus is not None:
            sql += " WHERE corpus_id = ?"
            params = (corpus,)
        rows = self._conn.execute(sql + " ORDER BY name", params).fetchall()
        return [_row_to_index(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunks and embeddings
    # ------------------------------------------------------------------

    def create_chunks(self, chunks: list[Chunk], index_name: str) -> dict[str, int]:
        """Insert *chunks* into *index_name*; existing chunks are left untouched.

        Returns chunk id → rowid for every chunk passed in, so the caller can
        key vector rows on it.
        """
        rowids: dict[str, int] = {}
        with transaction(self._conn):
            for chunk in chunks:
                self._conn.execute(
                    """
                    INSERT INTO index_chunks (chunk_id, content_id, text, index_name)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(index_name, chunk_id) DO NOTHING
                    """,
                    (chunk.chunk_id, chunk.content_id, chunk.text, index_name),
                )
                row = self._conn.execute(
                    "SELECT rowid FROM index_chunks WHERE index_name = ? AND chunk_id = ?",
                    (index_name, chunk.chunk_id),
                ).fetchone()
                rowids[chunk.chunk_id] = row[0]
        return rowids

    def chunk_with_id(self, chunk_id: str) -> ChunkWithMetadata:
        """Return a chunk joined with its content's metadata.

        Raises:
            ChunkNotFoundError: If no index holds the chunk.
            ContentNotFoundError: If the chunk's content is gone.
        """
        row = self._conn.execute(
            "SELECT chunk_id, content_id, text FROM index_chunks WHERE chunk_id = ? LIMIT 1",
            (chunk_id,),
        ).fetchone()
        if row is None:
            raise ChunkNotFoundError(chunk_id)
        content = self.content_by_id(row["content_id"])
        return ChunkWithMetadata(
            chunk_id=row["chunk_id"],
            content_id=row["content_id"],
            text=row["text"],
            metadata=content.metadata,
        )

    def list_chunks(self, index_name: str, content_id: str | None = None) -> list[Chunk]:
        sql = "SELECT chunk_id, content_id, text FROM index_chunks WHERE index_name = ?"
        params: list[Any] = [index_name]
        if content_id is not None:
            sql += " AND content_id = ?"
            params.append(content_id)
        rows = self._conn.execute(sql + " ORDER BY rowid", params).fetchall()
        return [Chunk(text=r["text"], content_id=r["content_id"], chunk_id=r["chunk_id"]) for r in rows]

    def add_embedding(
        self, index_name: str, rowid: int, embedding: list[float], backend: Any = None
    ) -> None:
        """Store *embedding* for chunk *rowid* in the vector index behind *index_name*."""
        index = self.get_index(index_name)
        if index.vector_index_name is None:
            raise VectorBackendError(f"index '{index_name}' has no vector index")
        backend = backend if backend is not None else self.vectors
        with transaction(self._conn):
            backend.add_embedding(index.vector_index_name, rowid, embedding)

    # ------------------------------------------------------------------
    # Extracted attributes
    # ------------------------------------------------------------------

    def add_attributes(
        self, corpus: str, index_name: str, extracted: ExtractedAttributes
    ) -> None:
        """Upsert attributes; re-running an extractor overwrites its prior output."""
        with transaction(self._conn):
            self._conn.execute(
                """
                INSERT INTO attributes_index
                    (id, corpus_id, index_name, extractor_name, content_id, data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    created_at = excluded.created_at
                """,
                (
                    extracted.id,
                    corpus,
                    index_name,
                    extracted.extractor_name,
                    extracted.content_id,
                    dump_json(extracted.attributes),
                    int(time.time()),
                ),
            )

    def get_extracted_attributes(
        self, corpus: str, index_name: str, content_id: str | None = None
    ) -> list[ExtractedAttributes]:
        sql = (
            "SELECT id, content_id, extractor_name, data FROM attributes_index "
            "WHERE corpus_id = ? AND index_name = ?"
        )
        params: list[Any] = [corpus, index_name]
        if content_id is not None:
            sql += " AND content_id = ?"
            params.append(content_id)
        rows = self._conn.execute(sql + " ORDER BY rowid", params).fetchall()
        return [
            ExtractedAttributes(
                id=r["id"],
                content_id=r["content_id"],
                attributes=load_json(r["data"], "extracted attributes"),
                extractor_name=r["extractor_name"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Timeline events
    # ------------------------------------------------------------------

    def add_events(self, corpus: str, events: list[Event]) -> None:
        """Record timeline events; an event id seen before is ignored."""
        with transaction(self._conn):
            self._conn.executemany(
                """
                INSERT INTO events (id, corpus_id, message, unix_time_stamp, metadata)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                [
                    (e.id, corpus, e.message, e.unix_timestamp, dump_json(e.metadata))
                    for e in events
                ],
            )

    def list_events(self, corpus: str) -> list[Event]:
        rows = self._conn.execute(
            "SELECT id, message, unix_time_stamp, metadata FROM events "
            "WHERE corpus_id = ? ORDER BY unix_time_stamp, rowid",
            (corpus,),
        ).fetchall()
        return [
            Event(
                id=r["id"],
                message=r["message"],
                unix_timestamp=r["unix_time_stamp"],
                metadata=load_json(r["metadata"], "event metadata", {}),
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_corpus(row: sqlite3.Row) -> Corpus:
    bindings = load_json(row["extractor_bindings"], "extractor bindings", {})
    connectors = load_json(row["data_connectors"], "data connectors", [])
    if not isinstance(bindings, dict) or not isinstance(connectors, list):
        raise SerializationError(f"corrupt corpus row '{row['name']}'")
    return Corpus(
        name=row["name"],
        data_connectors=[connector_from_dict(c) for c in connectors],
        extractor_bindings=[binding_from_dict(b) for b in bindings.values()],
        metadata=load_json(row["metadata"], "corpus metadata", {}),
    )


def _row_to_extractor(row: sqlite3.Row) -> ExtractorConfig:
    return ExtractorConfig(
        name=row["name"],
        description=row["description"],
        extractor_type=extractor_type_from_dict(
            load_json(row["extractor_type"], "extractor type")
        ),
        input_params=load_json(row["input_params"], "extractor input params", {}),
    )


def _row_to_index(row: sqlite3.Row) -> Index:
    return Index(
        name=row["name"],
        corpus=row["corpus_id"],
        extractor_name=row["extractor_name"],
        index_type=row["index_type"],
        vector_index_name=row["vector_index_name"],
    )
