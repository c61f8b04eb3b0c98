"""Extraction worker: executes the Work assigned to one worker id."""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass

from quarry.config import QuarryConfig
from quarry.db.errors import UnderlyingStoreError
from quarry.db.models import AttributesExtractor, EmbeddingExtractor, Work, WorkState
from quarry.db.store import Store
from quarry.extract.attributes import AttributeExtractor
from quarry.extract.chunker import TextChunker
from quarry.extract.embedder import Embedder

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    completed: int = 0
    failed: int = 0


class ExtractionWorker:
    """Runs Pending work assigned to *worker_id*.

    Each item goes InProgress, is executed, its completion marker is set and
    it goes Completed. An extractor failure moves the item to Failed and the
    worker continues with the next one; store transport errors propagate.
    There is no heartbeat: an item left InProgress by a crash stays there
    until an external supervisor re-queues it (see ``JobQueue.stalled``).
    """

    def __init__(
        self,
        store: Store,
        worker_id: str,
        config: QuarryConfig | None = None,
        embedder: Embedder | None = None,
        attribute_extractor: AttributeExtractor | None = None,
    ) -> None:
        cfg = config or QuarryConfig()
        self.worker_id = worker_id
        self._store = store
        self._poll_interval = cfg.worker.poll_interval
        self._embedder = embedder or Embedder(
            store,
            model=cfg.embedding.model,
            chunker=TextChunker(cfg.worker.chunk_size, cfg.worker.overlap),
        )
        self._attributes = attribute_extractor or AttributeExtractor(
            store, model=cfg.attributes.model
        )
        self.stats = WorkerStats()

    def run_once(self) -> WorkerStats:
        """Execute the current backlog once. Returns stats for this pass."""
        batch = WorkerStats()
        for work in self._store.jobs.for_worker(self.worker_id):
            self._store.jobs.advance_state(work.id, WorkState.IN_PROGRESS)
            try:
                self._execute(work)
            except UnderlyingStoreError:
                raise
            except Exception:
                logger.exception("work %s failed (%s on %s)", work.id, work.extractor, work.content_id)
                self._store.jobs.advance_state(work.id, WorkState.FAILED)
                batch.failed += 1
                continue
            self._store.completion.mark_processed(work.content_id, work.binding_id)
            self._store.jobs.advance_state(work.id, WorkState.COMPLETED)
            batch.completed += 1

        self.stats.completed += batch.completed
        self.stats.failed += batch.failed
        if batch.completed or batch.failed:
            logger.info(
                "worker %s: %d completed, %d failed", self.worker_id, batch.completed, batch.failed
            )
        return batch

    def run(self, max_iterations: int | None = None) -> WorkerStats:
        """Poll for assigned work until *max_iterations* (forever if None)."""
        for iteration in itertools.count():
            if max_iterations is not None and iteration >= max_iterations:
                break
            batch = self.run_once()
            if not (batch.completed or batch.failed):
                time.sleep(self._poll_interval)
        return self.stats

    def _execute(self, work: Work) -> None:
        extractor = self._store.get_extractor(work.extractor)
        content = self._store.content_by_id(work.content_id, work.corpus)
        kind = extractor.extractor_type
        if isinstance(kind, EmbeddingExtractor):
            self._embedder.extract(content, work.index_name, kind.dim)
        elif isinstance(kind, AttributesExtractor):
            self._attributes.extract(content, extractor.name, work.index_name, kind.schema)
        else:
            raise TypeError(f"unsupported extractor type: {kind!r}")
