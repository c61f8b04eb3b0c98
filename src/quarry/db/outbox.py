"""Transactional outbox of extraction events.

Events are appended in the same transaction as the mutation they announce
and consumed by polling for rows without a ``processed_at`` marker. A
consumer that crashes before ``mark_processed`` sees the event again on its
next poll, so every handler must be idempotent. Rows are never deleted.
"""

from __future__ import annotations

import logging
import sqlite3
import time

from quarry.db.connection import transaction
from quarry.db.errors import EventNotFoundError, LogicError
from quarry.db.models import (
    ExtractionEvent,
    dump_json,
    load_json,
    payload_from_dict,
    payload_to_dict,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, corpus_id, payload, processed_at"


class OutboxLog:
    """Append / poll / acknowledge over the ``extraction_events`` table.

    Assumes a single active consumer; there is no partitioning or fencing.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def append(self, event: ExtractionEvent) -> None:
        """Insert *event* into the caller's open transaction. Does not commit.

        Raises:
            LogicError: If no transaction is open; an event written on its own
                could become visible without the mutation it announces.
        """
        if not self._conn.in_transaction:
            raise LogicError("outbox append must run inside the mutation's transaction")
        self._conn.execute(
            "INSERT INTO extraction_events (id, corpus_id, payload) VALUES (?, ?, ?)",
            (event.id, event.corpus, dump_json(payload_to_dict(event.payload))),
        )
        logger.debug("outbox: appended %s (%s)", event.id, type(event.payload).__name__)

    def poll_unprocessed(self, limit: int | None = None) -> list[ExtractionEvent]:
        """Return undelivered events in insertion order."""
        sql = (
            f"SELECT {_COLUMNS} FROM extraction_events "
            "WHERE processed_at IS NULL ORDER BY rowid"
        )
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_event(r) for r in rows]

    def mark_processed(self, event_id: str) -> None:
        """Set the processed marker on *event_id*. Marking twice is a no-op.

        Raises:
            EventNotFoundError: If no such event exists.
        """
        with transaction(self._conn):
            cur = self._conn.execute(
                "UPDATE extraction_events SET processed_at = ? "
                "WHERE id = ? AND processed_at IS NULL",
                (int(time.time()), event_id),
            )
            if cur.rowcount == 0 and self.get(event_id) is None:
                raise EventNotFoundError(event_id)

    def get(self, event_id: str) -> ExtractionEvent | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM extraction_events WHERE id = ?", (event_id,)
        ).fetchone()
        return _row_to_event(row) if row else None

    def list_events(self, include_processed: bool = True) -> list[ExtractionEvent]:
        """Return events in insertion order, for audit and replay tooling."""
        if not include_processed:
            return self.poll_unprocessed()
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM extraction_events ORDER BY rowid"
        ).fetchall()
        return [_row_to_event(r) for r in rows]


def _row_to_event(row: sqlite3.Row) -> ExtractionEvent:
    return ExtractionEvent(
        id=row["id"],
        corpus=row["corpus_id"],
        payload=payload_from_dict(load_json(row["payload"], "event payload")),
        processed_at=row["processed_at"],
    )
