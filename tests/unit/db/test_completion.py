"""Tests for completion markers and the unprocessed-content query."""

from __future__ import annotations

import threading

import pytest

from quarry.db.completion import CompletionTracker, compile_unprocessed_query, marker_path
from quarry.db.connection import Database
from quarry.db.errors import ContentNotFoundError, InvalidFilterError
from quarry.db.models import Content, Corpus, Eq, ExtractorBinding, Neq


@pytest.fixture
def pipe_and_baz(store):
    """Two content items differing only in metadata topic."""
    store.upsert_corpus(Corpus(name="docs"))
    pipe = Content.from_text("docs", "about pipes", {"topic": "pipe"})
    baz = Content.from_text("docs", "about baz", {"topic": "baz"})
    store.ingest_content("docs", [pipe, baz])
    return pipe, baz


def _ids(contents):
    return [c.id for c in contents]


# ------------------------------------------------------------------
# Query compilation
# ------------------------------------------------------------------

def test_marker_path():
    assert marker_path("abc") == '$.state."abc"'


def test_compile_unprocessed_query_params():
    binding = ExtractorBinding.new("docs", "minilm", "emb", [Eq("lang", "en"), Neq("kind", "spam")])
    sql, params = compile_unprocessed_query("docs", binding, "c1")
    assert sql.count("json_extract(metadata, ?)") == 2
    assert params == [
        "docs", marker_path(binding.id), "c1",
        '$."lang"', '$."lang"', "en",
        '$."kind"', '$."kind"', "spam",
    ]


def test_compile_rejects_non_string_value():
    binding = ExtractorBinding.new("docs", "minilm", "emb", [Eq("year", 2024)])
    with pytest.raises(InvalidFilterError, match="string"):
        compile_unprocessed_query("docs", binding)


def test_compile_rejects_quote_in_field():
    binding = ExtractorBinding.new("docs", "minilm", "emb", [Eq('ev"il', "x")])
    with pytest.raises(InvalidFilterError):
        compile_unprocessed_query("docs", binding)


def test_invalid_filter_is_value_error():
    assert issubclass(InvalidFilterError, ValueError)


# ------------------------------------------------------------------
# Predicate correctness
# ------------------------------------------------------------------

def test_eq_filter(store, pipe_and_baz):
    pipe, _baz = pipe_and_baz
    binding = ExtractorBinding.new("docs", "minilm", "emb", [Eq("topic", "pipe")])
    assert _ids(store.find_unprocessed("docs", binding)) == [pipe.id]


def test_neq_filter(store, pipe_and_baz):
    _pipe, baz = pipe_and_baz
    binding = ExtractorBinding.new("docs", "minilm", "emb", [Neq("topic", "pipe")])
    assert _ids(store.find_unprocessed("docs", binding)) == [baz.id]


def test_no_filters_matches_all_in_insertion_order(store, pipe_and_baz):
    pipe, baz = pipe_and_baz
    binding = ExtractorBinding.new("docs", "minilm", "emb")
    assert _ids(store.find_unprocessed("docs", binding)) == [pipe.id, baz.id]


def test_filters_are_conjunctive(store, pipe_and_baz):
    binding = ExtractorBinding.new(
        "docs", "minilm", "emb", [Eq("topic", "pipe"), Eq("topic", "baz")]
    )
    assert store.find_unprocessed("docs", binding) == []


def test_missing_metadata_key_matches_neither_operator(store, pipe_and_baz):
    eq = ExtractorBinding.new("docs", "minilm", "emb", [Eq("lang", "en")])
    neq = ExtractorBinding.new("docs", "minilm", "emb", [Neq("lang", "en")])
    assert store.find_unprocessed("docs", eq) == []
    assert store.find_unprocessed("docs", neq) == []


@pytest.fixture
def typed(store):
    """Content whose metadata holds numbers and a boolean."""
    store.upsert_corpus(Corpus(name="docs"))
    item = Content.from_text("docs", "annual report", {"year": 2024, "draft": True, "score": 1.5})
    store.ingest_content("docs", [item])
    return item


@pytest.mark.parametrize("filters,matches", [
    ([Eq("year", "2024")], True),
    ([Neq("year", "2024")], False),
    ([Eq("year", "2023")], False),
    ([Neq("year", "2023")], True),
    ([Eq("draft", "true")], True),
    ([Neq("draft", "false")], True),
    ([Eq("draft", "1")], False),
    ([Eq("score", "1.5")], True),
])
def test_non_string_metadata_compares_as_text(store, typed, filters, matches):
    binding = ExtractorBinding.new("docs", "minilm", "emb", filters)
    assert _ids(store.find_unprocessed("docs", binding)) == ([typed.id] if matches else [])


def test_restrict_to_content_id(store, pipe_and_baz):
    _pipe, baz = pipe_and_baz
    binding = ExtractorBinding.new("docs", "minilm", "emb")
    assert _ids(store.find_unprocessed("docs", binding, baz.id)) == [baz.id]


def test_other_corpus_content_not_returned(store, pipe_and_baz):
    binding = ExtractorBinding.new("mail", "minilm", "emb")
    assert store.find_unprocessed("mail", binding) == []


# ------------------------------------------------------------------
# Markers
# ------------------------------------------------------------------

def test_mark_processed_excludes_content(store, pipe_and_baz):
    pipe, baz = pipe_and_baz
    binding = ExtractorBinding.new("docs", "minilm", "emb")
    store.completion.mark_processed(pipe.id, binding.id)
    assert _ids(store.find_unprocessed("docs", binding)) == [baz.id]
    assert store.content_by_id(pipe.id).is_processed(binding.id)


def test_markers_are_per_binding(store, pipe_and_baz):
    pipe, baz = pipe_and_baz
    first = ExtractorBinding.new("docs", "minilm", "emb")
    second = ExtractorBinding.new("docs", "summariser", "attrs")
    store.completion.mark_processed(pipe.id, first.id)
    assert _ids(store.find_unprocessed("docs", second)) == [pipe.id, baz.id]


def test_markers_for_different_bindings_accumulate(store, pipe_and_baz):
    pipe, _baz = pipe_and_baz
    store.completion.mark_processed(pipe.id, "b1")
    store.completion.mark_processed(pipe.id, "b2")
    completion = store.content_by_id(pipe.id).completion
    assert set(completion) == {"b1", "b2"}
    assert all(v >= 1 for v in completion.values())


def test_concurrent_markers_from_separate_connections_both_survive(tmp_path, store, pipe_and_baz):
    pipe, _baz = pipe_and_baz
    binding_ids = [f"b{i}" for i in range(4)]
    barrier = threading.Barrier(len(binding_ids))
    errors: list[BaseException] = []

    def mark(binding_id: str) -> None:
        conn = Database(tmp_path / ".quarry.db").connect()
        try:
            barrier.wait()
            CompletionTracker(conn).mark_processed(pipe.id, binding_id)
        except BaseException as exc:
            errors.append(exc)
        finally:
            conn.close()

    threads = [threading.Thread(target=mark, args=(b,)) for b in binding_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert set(store.content_by_id(pipe.id).completion) == set(binding_ids)


def test_mark_processed_is_monotonic(store, pipe_and_baz):
    pipe, _baz = pipe_and_baz
    store.completion.mark_processed(pipe.id, "b1")
    first = store.content_by_id(pipe.id).completion["b1"]
    store.completion.mark_processed(pipe.id, "b1")
    assert store.content_by_id(pipe.id).completion["b1"] == first


def test_mark_processed_unknown_content(store):
    with pytest.raises(ContentNotFoundError):
        store.completion.mark_processed("missing", "b1")


def test_docs_corpus_language_scenario(store):
    b1 = ExtractorBinding.new("docs", "minilm", "docs-emb", [Eq("lang", "en")])
    store.upsert_corpus(Corpus(name="docs", extractor_bindings=[b1]))
    en = Content.from_text("docs", "hello", {"lang": "en"})
    fr = Content.from_text("docs", "bonjour", {"lang": "fr"})
    store.ingest_content("docs", [en, fr])

    assert _ids(store.find_unprocessed("docs", b1)) == [en.id]

    store.completion.mark_processed(en.id, b1.id)

    assert store.find_unprocessed("docs", b1) == []
