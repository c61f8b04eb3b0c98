"""Tests for ExtractionWorker, end to end through the coordinator."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from quarry.config import QuarryConfig
from quarry.coordinator import Coordinator
from quarry.db.errors import UnderlyingStoreError
from quarry.db.models import (
    AttributesExtractor,
    Content,
    Corpus,
    EmbeddingExtractor,
    ExtractorBinding,
    ExtractorConfig,
    WorkState,
)
from quarry.extract.worker import ExtractionWorker


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


@pytest.fixture
def planned(store):
    """One content item with embedding and attribute work assigned to w1."""
    store.record_extractors([
        ExtractorConfig(name="minilm", extractor_type=EmbeddingExtractor(dim=3)),
        ExtractorConfig(name="summariser", extractor_type=AttributesExtractor(schema="{}")),
    ])
    emb = ExtractorBinding.new("docs", "minilm", "docs-emb")
    attrs = ExtractorBinding.new("docs", "summariser", "docs-attrs")
    store.upsert_corpus(Corpus(name="docs", extractor_bindings=[emb, attrs]))
    item = Content.from_text("docs", "The pipe burst at noon.")
    store.ingest_content("docs", [item])

    coordinator = Coordinator(store)
    coordinator.process_events()
    coordinator.distribute_work(["w1"])
    return item, emb, attrs


def _mock_llm(embedding=None, completion_text='{"topic": "pipe"}'):
    emb_response = MagicMock()
    emb_response.data = [{"embedding": embedding or [0.1, 0.2, 0.3]}]
    comp_response = MagicMock()
    comp_response.choices = [MagicMock()]
    comp_response.choices[0].message.content = completion_text
    return (
        patch("quarry.extract.embedder.litellm.embedding", return_value=emb_response),
        patch("quarry.extract.attributes.litellm.completion", return_value=comp_response),
    )


def test_run_once_completes_assigned_work(store, planned):
    item, emb, attrs = planned
    p_emb, p_comp = _mock_llm()
    with p_emb, p_comp:
        stats = ExtractionWorker(store, "w1").run_once()

    assert (stats.completed, stats.failed) == (2, 0)
    assert {w.work_state for w in store.jobs.list_work()} == {WorkState.COMPLETED}
    content = store.content_by_id(item.id)
    assert content.is_processed(emb.id)
    assert content.is_processed(attrs.id)
    assert store.find_unprocessed("docs", emb) == []
    assert len(store.list_chunks("docs-emb", item.id)) == 1
    [extracted] = store.get_extracted_attributes("docs", "docs-attrs", item.id)
    assert extracted.attributes == {"topic": "pipe"}


def test_completed_work_is_not_rerun(store, planned):
    p_emb, p_comp = _mock_llm()
    with p_emb, p_comp:
        worker = ExtractionWorker(store, "w1")
        worker.run_once()
        again = worker.run_once()
    assert (again.completed, again.failed) == (0, 0)
    assert worker.stats.completed == 2


def test_other_worker_sees_nothing(store, planned):
    p_emb, p_comp = _mock_llm()
    with p_emb, p_comp:
        stats = ExtractionWorker(store, "w2").run_once()
    assert (stats.completed, stats.failed) == (0, 0)
    assert len(store.jobs.for_worker("w1")) == 2


def test_extractor_failure_marks_failed_and_continues(store, planned):
    item, emb, attrs = planned
    p_emb, p_comp = _mock_llm(completion_text="not json")
    with p_emb, p_comp:
        stats = ExtractionWorker(store, "w1").run_once()

    assert (stats.completed, stats.failed) == (1, 1)
    states = {w.extractor: w.work_state for w in store.jobs.list_work()}
    assert states == {"minilm": WorkState.COMPLETED, "summariser": WorkState.FAILED}
    content = store.content_by_id(item.id)
    assert content.is_processed(emb.id)
    assert not content.is_processed(attrs.id)


def test_store_transport_errors_propagate(store, planned):
    p_emb, p_comp = _mock_llm()
    with p_emb, p_comp, patch.object(
        store.completion, "mark_processed", side_effect=UnderlyingStoreError("disk I/O error")
    ):
        with pytest.raises(UnderlyingStoreError):
            ExtractionWorker(store, "w1").run_once()
    # the item is left InProgress for a supervisor to requeue
    assert len(store.jobs.stalled("w1")) == 1


def test_worker_uses_config_models(store, planned):
    cfg = QuarryConfig()
    cfg.embedding.model = "ollama/nomic-embed-text"
    p_emb, p_comp = _mock_llm()
    with p_emb as embed, p_comp:
        ExtractionWorker(store, "w1", config=cfg).run_once()
    assert embed.call_args.kwargs["model"] == "ollama/nomic-embed-text"


def test_run_sleeps_when_idle(store):
    worker = ExtractionWorker(store, "w1")
    with patch("quarry.extract.worker.time.sleep") as sleep:
        stats = worker.run(max_iterations=3)
    assert (stats.completed, stats.failed) == (0, 0)
    assert sleep.call_count == 3
