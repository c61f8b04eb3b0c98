"""Embedding extraction — chunk content, embed via LiteLLM, store vectors.

For each content item:
1. Split the text with ``TextChunker``.
2. Store the chunks in the target index via ``Store.create_chunks()``.
3. Embed all chunk texts in one ``litellm.embedding()`` call.
4. Store each vector via ``Store.add_embedding()`` keyed on the chunk rowid.

Every step is idempotent, so re-running the same Work item after a crash
rewrites the same chunks and vectors.
"""

from __future__ import annotations

import logging

import litellm

from quarry.db.models import Content
from quarry.db.store import Store
from quarry.extract.chunker import TextChunker
from quarry.extract.llm import ExtractionError, validate_api_key

logger = logging.getLogger(__name__)


class Embedder:
    """Write embeddings of *content* into an embedding index.

    Args:
        store:   Open Store instance.
        model:   LiteLLM embedding model string.
        chunker: Text chunker (default: 512 tokens / 10 % overlap).
    """

    def __init__(
        self,
        store: Store,
        model: str = "openai/text-embedding-3-small",
        chunker: TextChunker | None = None,
    ) -> None:
        self._store = store
        self._model = model
        self._chunker = chunker or TextChunker()

    def extract(self, content: Content, index_name: str, dim: int) -> int:
        """Embed *content* into *index_name*. Returns the number of chunks written."""
        chunks = self._chunker.chunk(content.id, content.text)
        if not chunks:
            return 0
        validate_api_key(self._model)

        rowids = self._store.create_chunks(chunks, index_name)
        vectors = self._embed([c.text for c in chunks], dim)
        if len(vectors) != len(chunks):
            raise ExtractionError(
                f"embedding model returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        for chunk, vector in zip(chunks, vectors):
            self._store.add_embedding(index_name, rowids[chunk.chunk_id], vector)

        logger.debug("embedded %d chunk(s) of %s into '%s'", len(chunks), content.id, index_name)
        return len(chunks)

    def _embed(self, texts: list[str], dim: int) -> list[list[float]]:
        response = litellm.embedding(model=self._model, input=texts, dimensions=dim)
        return [item["embedding"] for item in response.data]
