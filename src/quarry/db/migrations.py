"""Forward-only migration runner for the Quarry schema.

Vec tables (vec_*) are NOT migration-managed — they are created by the
vector backend when an embedding index is declared.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS corpora (
    name                TEXT PRIMARY KEY,
    data_connectors     TEXT NOT NULL DEFAULT '[]',
    extractor_bindings  TEXT NOT NULL DEFAULT '{}',
    metadata            TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS extractors (
    name            TEXT PRIMARY KEY,
    description     TEXT NOT NULL DEFAULT '',
    extractor_type  TEXT NOT NULL,
    input_params    TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS content (
    id                        TEXT PRIMARY KEY,
    corpus_id                 TEXT NOT NULL,
    text                      TEXT NOT NULL,
    metadata                  TEXT NOT NULL DEFAULT '{}',
    content_type              TEXT NOT NULL DEFAULT 'text',
    extractor_bindings_state  TEXT NOT NULL DEFAULT '{"state":{}}',
    created_at                DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_content_corpus ON content(corpus_id);

CREATE TABLE IF NOT EXISTS extraction_events (
    id               TEXT PRIMARY KEY,
    corpus_id        TEXT NOT NULL,
    payload          TEXT NOT NULL,
    processed_at     INTEGER,
    created_at       DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_extraction_events_unprocessed
    ON extraction_events(processed_at);

CREATE TABLE IF NOT EXISTS work (
    id                TEXT PRIMARY KEY,
    state             TEXT NOT NULL,
    worker_id         TEXT,
    content_id        TEXT NOT NULL,
    corpus_id         TEXT NOT NULL,
    index_name        TEXT NOT NULL,
    extractor         TEXT NOT NULL,
    extractor_params  TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_work_state_worker ON work(state, worker_id);

CREATE TABLE IF NOT EXISTS indexes (
    name               TEXT PRIMARY KEY,
    corpus_id          TEXT NOT NULL,
    extractor_name     TEXT NOT NULL,
    index_type         TEXT NOT NULL,
    vector_index_name  TEXT
);

CREATE TABLE IF NOT EXISTS index_chunks (
    chunk_id    TEXT NOT NULL,
    content_id  TEXT NOT NULL,
    text        TEXT NOT NULL,
    index_name  TEXT NOT NULL,
    UNIQUE (index_name, chunk_id)
);

CREATE TABLE IF NOT EXISTS attributes_index (
    id              TEXT PRIMARY KEY,
    corpus_id       TEXT NOT NULL,
    index_name      TEXT NOT NULL,
    extractor_name  TEXT NOT NULL,
    content_id      TEXT NOT NULL,
    data            TEXT NOT NULL,
    created_at      INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS events (
    id               TEXT PRIMARY KEY,
    corpus_id        TEXT NOT NULL,
    message          TEXT NOT NULL,
    unix_time_stamp  INTEGER NOT NULL,
    metadata         TEXT NOT NULL DEFAULT '{}'
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here — the vector backend creates them.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
