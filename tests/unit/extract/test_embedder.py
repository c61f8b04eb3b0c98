"""Tests for Embedder."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from quarry.db.models import Content
from quarry.db.vectors import CreateIndexParams, index_to_slug, vec_table_name
from quarry.extract.chunker import TextChunker
from quarry.extract.embedder import Embedder
from quarry.extract.llm import ExtractionError


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def content(store):
    item = Content.from_text("docs", "DMX512 uses a 250 kbit/s serial line.", {"lang": "en"})
    store.ingest_content("docs", [item])
    store.create_index("docs", "minilm", "docs-emb", CreateIndexParams("docs-emb", "docs.docs-emb", dim=3))
    return item


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


def _mock_embedding(*vectors):
    response = MagicMock()
    response.data = [{"embedding": v} for v in vectors]
    return patch("quarry.extract.embedder.litellm.embedding", return_value=response)


def _vec_count(tmp_db) -> int:
    table = vec_table_name(index_to_slug("docs.docs-emb"))
    return tmp_db.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


# ------------------------------------------------------------------
# Tests
# ------------------------------------------------------------------


def test_extract_writes_chunks_and_vectors(store, tmp_db, content):
    with _mock_embedding([0.1, 0.2, 0.3]) as embed:
        written = Embedder(store).extract(content, "docs-emb", dim=3)

    assert written == 1
    embed.assert_called_once_with(
        model="openai/text-embedding-3-small", input=[content.text], dimensions=3
    )
    assert [c.text for c in store.list_chunks("docs-emb", content.id)] == [content.text]
    assert _vec_count(tmp_db) == 1


def test_extract_twice_is_idempotent(store, tmp_db, content):
    with _mock_embedding([0.1, 0.2, 0.3]):
        Embedder(store).extract(content, "docs-emb", dim=3)
        Embedder(store).extract(content, "docs-emb", dim=3)
    assert len(store.list_chunks("docs-emb")) == 1
    assert _vec_count(tmp_db) == 1


def test_extract_multiple_chunks(store, tmp_db, content):
    long_item = Content.from_text("docs", " ".join(f"token{i}" for i in range(40)))
    store.ingest_content("docs", [long_item])
    chunker = TextChunker(chunk_size=10, overlap=0.0)
    chunks = chunker.chunk(long_item.id, long_item.text)
    vectors = [[float(i), 0.0, 1.0] for i in range(len(chunks))]

    with _mock_embedding(*vectors):
        written = Embedder(store, chunker=chunker).extract(long_item, "docs-emb", dim=3)

    assert written == len(chunks) > 1
    assert _vec_count(tmp_db) == len(chunks)


def test_vector_count_mismatch(store, content):
    with _mock_embedding():
        with pytest.raises(ExtractionError, match="0 vectors"):
            Embedder(store).extract(content, "docs-emb", dim=3)


def test_empty_text_skips_model(store):
    item = Content.from_text("docs", "   ")
    with _mock_embedding([0.1, 0.2, 0.3]) as embed:
        assert Embedder(store).extract(item, "docs-emb", dim=3) == 0
    embed.assert_not_called()


def test_missing_api_key(store, content, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    with _mock_embedding([0.1, 0.2, 0.3]) as embed:
        with pytest.raises(ExtractionError, match="OPENAI_API_KEY"):
            Embedder(store).extract(content, "docs-emb", dim=3)
    embed.assert_not_called()


def test_local_model_needs_no_key(store, content, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    with _mock_embedding([0.1, 0.2, 0.3]):
        assert Embedder(store, model="ollama/nomic-embed-text").extract(content, "docs-emb", dim=3) == 1
