"""Extraction work queue: creation, assignment and lifecycle of Work items.

Assignment and state changes are single-row targeted UPDATEs keyed by work
id. State only moves forward (Pending → InProgress → Completed | Failed);
the guard is part of the UPDATE itself, so a late writer cannot regress an
item another writer already advanced.
"""

from __future__ import annotations

import logging
import sqlite3

from quarry.db.connection import transaction
from quarry.db.errors import InvalidStateTransitionError, WorkNotFoundError
from quarry.db.models import Work, WorkState, dump_json, load_json

logger = logging.getLogger(__name__)

_COLUMNS = "id, state, worker_id, content_id, corpus_id, index_name, extractor, extractor_params"


class JobQueue:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def enqueue(self, work: Work) -> bool:
        """Insert *work* as Pending and unassigned.

        Re-enqueueing the same logical work (same deterministic id) is a
        no-op. Returns True when a new row was created.
        """
        with transaction(self._conn):
            cur = self._conn.execute(
                f"""
                INSERT INTO work ({_COLUMNS})
                VALUES (?, ?, NULL, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (
                    work.id,
                    WorkState.PENDING.value,
                    work.content_id,
                    work.corpus,
                    work.index_name,
                    work.extractor,
                    dump_json(work.extractor_params),
                ),
            )
        created = cur.rowcount == 1
        if created:
            logger.debug("queued work %s (%s → %s)", work.id, work.extractor, work.index_name)
        return created

    def get(self, work_id: str) -> Work:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM work WHERE id = ?", (work_id,)
        ).fetchone()
        if row is None:
            raise WorkNotFoundError(work_id)
        return _row_to_work(row)

    def unassigned(self) -> list[Work]:
        """All Pending work without a worker, for the scheduler to plan."""
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM work WHERE state = ? AND worker_id IS NULL ORDER BY rowid",
            (WorkState.PENDING.value,),
        ).fetchall()
        return [_row_to_work(r) for r in rows]

    def assign(self, allocation: dict[str, str]) -> None:
        """Set worker ids from *allocation* (work id → worker id).

        State is unchanged. An existing assignment is overwritten; unknown
        work ids are ignored.
        """
        if not allocation:
            return
        with transaction(self._conn):
            self._conn.executemany(
                "UPDATE work SET worker_id = ? WHERE id = ?",
                [(worker_id, work_id) for work_id, worker_id in allocation.items()],
            )
        logger.info("assigned %d work item(s)", len(allocation))

    def advance_state(self, work_id: str, new_state: WorkState) -> None:
        """Move *work_id* to *new_state*.

        Setting the state it already has is a no-op.

        Raises:
            WorkNotFoundError: If the work item does not exist.
            InvalidStateTransitionError: If *new_state* is not after the
                current state (e.g. Completed → Pending, Completed → Failed).
        """
        # Unrecognised stored values rank as Unknown, so they are not blocked.
        blocked = [s.value for s in WorkState if s.rank >= new_state.rank]
        placeholders = ",".join("?" * len(blocked))
        with transaction(self._conn):
            cur = self._conn.execute(
                f"UPDATE work SET state = ? WHERE id = ? AND state NOT IN ({placeholders})",
                (new_state.value, work_id, *blocked),
            )
            if cur.rowcount == 0:
                current = self.get(work_id).work_state
                if current != new_state:
                    raise InvalidStateTransitionError(work_id, current.value, new_state.value)

    def for_worker(self, worker_id: str) -> list[Work]:
        """Pending work assigned to *worker_id* (its backlog after a restart)."""
        return self._by_worker(worker_id, WorkState.PENDING)

    def stalled(self, worker_id: str) -> list[Work]:
        """InProgress work of *worker_id*, for an external supervisor to inspect."""
        return self._by_worker(worker_id, WorkState.IN_PROGRESS)

    def list_work(self, state: WorkState | None = None) -> list[Work]:
        if state is None:
            rows = self._conn.execute(f"SELECT {_COLUMNS} FROM work ORDER BY rowid").fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM work WHERE state = ? ORDER BY rowid", (state.value,)
            ).fetchall()
        return [_row_to_work(r) for r in rows]

    def _by_worker(self, worker_id: str, state: WorkState) -> list[Work]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM work WHERE worker_id = ? AND state = ? ORDER BY rowid",
            (worker_id, state.value),
        ).fetchall()
        return [_row_to_work(r) for r in rows]


def _row_to_work(row: sqlite3.Row) -> Work:
    return Work(
        id=row["id"],
        content_id=row["content_id"],
        corpus=row["corpus_id"],
        index_name=row["index_name"],
        extractor=row["extractor"],
        extractor_params=load_json(row["extractor_params"], "extractor params", {}),
        work_state=WorkState.parse(row["state"]),
        worker_id=row["worker_id"],
    )
