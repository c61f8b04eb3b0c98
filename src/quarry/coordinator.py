"""Outbox consumer: turns extraction events into planned, assigned work.

For each unprocessed outbox event the coordinator plans Work items, then
marks the event processed. Planning is idempotent (Work ids are
deterministic), so an event re-delivered after a crash only re-enqueues
work that already exists, which is a no-op.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass

from quarry.db.errors import (
    AlreadyExistsError,
    CorpusNotFoundError,
    InvalidFilterError,
    LogicError,
    NotFoundError,
)
from quarry.db.models import (
    BindingAdded,
    Content,
    ContentCreated,
    EmbeddingExtractor,
    ExtractionEvent,
    ExtractorBinding,
    Work,
)
from quarry.db.store import Store
from quarry.db.vectors import CreateIndexParams

logger = logging.getLogger(__name__)

# Handling errors that re-delivery cannot fix.
_PERMANENT_ERRORS = (NotFoundError, AlreadyExistsError, InvalidFilterError)


def vector_index_name(corpus: str, index_name: str) -> str:
    """Name of the vector index backing *index_name* of *corpus*."""
    return f"{corpus}.{index_name}"


@dataclass
class CoordinatorStats:
    events_processed: int = 0
    events_skipped: int = 0
    work_created: int = 0
    work_assigned: int = 0


class Coordinator:
    """Single active consumer of the outbox.

    Args:
        store: Open Store instance.
    """

    def __init__(self, store: Store) -> None:
        self._store = store
        self.stats = CoordinatorStats()

    def process_events(self, limit: int | None = None) -> int:
        """Handle every unprocessed event. Returns the number handled.

        An event whose handling fails permanently (a referenced row is gone,
        or an index name is taken by different parameters) is logged, marked
        processed and skipped, so it cannot block the events behind it.
        Transient store errors propagate and the event is re-delivered.
        """
        events = self._store.outbox.poll_unprocessed(limit)
        for event in events:
            try:
                created = self._handle(event)
            except _PERMANENT_ERRORS:
                logger.exception(
                    "event %s (%s) cannot be handled, skipping",
                    event.id,
                    type(event.payload).__name__,
                )
                self._store.outbox.mark_processed(event.id)
                self.stats.events_processed += 1
                self.stats.events_skipped += 1
                continue
            self._store.outbox.mark_processed(event.id)
            self.stats.events_processed += 1
            self.stats.work_created += created
            logger.info(
                "event %s (%s): %d new work item(s)",
                event.id,
                type(event.payload).__name__,
                created,
            )
        return len(events)

    def distribute_work(self, worker_ids: list[str]) -> dict[str, str]:
        """Assign all unassigned work round-robin over *worker_ids*.

        Returns the allocation (work id → worker id) that was written.
        """
        if not worker_ids:
            raise ValueError("distribute_work needs at least one worker id")
        workers = itertools.cycle(worker_ids)
        allocation = {work.id: next(workers) for work in self._store.jobs.unassigned()}
        self._store.jobs.assign(allocation)
        self.stats.work_assigned += len(allocation)
        return allocation

    def run(
        self,
        worker_ids: list[str] | None = None,
        poll_interval: float = 1.0,
        max_iterations: int | None = None,
    ) -> CoordinatorStats:
        """Poll the outbox until *max_iterations* is reached (forever if None)."""
        for iteration in itertools.count():
            if max_iterations is not None and iteration >= max_iterations:
                break
            handled = self.process_events()
            if worker_ids:
                self.distribute_work(worker_ids)
            if not handled:
                time.sleep(poll_interval)
        return self.stats

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle(self, event: ExtractionEvent) -> int:
        payload = event.payload
        if isinstance(payload, BindingAdded):
            return self._on_binding_added(payload)
        if isinstance(payload, ContentCreated):
            return self._on_content_created(payload)
        raise LogicError(f"unhandled event payload: {payload!r}")

    def _on_binding_added(self, payload: BindingAdded) -> int:
        binding = self._store.binding_by_id(payload.corpus, payload.binding_id)
        self._ensure_index(payload.corpus, binding)
        pending = self._store.find_unprocessed(payload.corpus, binding)
        return self._plan(payload.corpus, binding, pending)

    def _on_content_created(self, payload: ContentCreated) -> int:
        content = self._store.content_by_id(payload.content_id)
        try:
            corpus = self._store.corpus_by_name(content.corpus)
        except CorpusNotFoundError:
            # No bindings yet; the corpus's BindingAdded events will plan it.
            logger.info("content %s: corpus '%s' not declared yet", content.id, content.corpus)
            return 0
        created = 0
        for binding in corpus.extractor_bindings:
            try:
                pending = self._store.find_unprocessed(corpus.name, binding, content.id)
                if pending:
                    # BindingAdded for this binding may not have been handled yet.
                    self._ensure_index(corpus.name, binding)
                created += self._plan(corpus.name, binding, pending)
            except _PERMANENT_ERRORS:
                logger.exception(
                    "content %s: binding %s cannot be planned, skipping",
                    content.id,
                    binding.id,
                )
        return created

    def _ensure_index(self, corpus: str, binding: ExtractorBinding) -> None:
        extractor = self._store.get_extractor(binding.extractor_name)
        params = None
        if isinstance(extractor.extractor_type, EmbeddingExtractor):
            params = CreateIndexParams(
                index_name=binding.index_name,
                vectordb_index_name=vector_index_name(corpus, binding.index_name),
                dim=extractor.extractor_type.dim,
                distance=extractor.extractor_type.distance,
            )
        self._store.create_index(corpus, binding.extractor_name, binding.index_name, params)

    def _plan(self, corpus: str, binding: ExtractorBinding, contents: list[Content]) -> int:
        created = 0
        for content in contents:
            work = Work.new(
                content.id,
                corpus,
                binding.index_name,
                binding.extractor_name,
                binding.input_params,
            )
            if self._store.jobs.enqueue(work):
                created += 1
        return created
