from __future__ import annotations

import numpy as np
import pytest

from vellum.corpus import CorpusRegistry
from vellum.errors import DimensionMismatchError, VellumError
from vellum.file_cache import Fingerprint
from vellum.search import SimilaritySearch, _top_indices
from vellum.session import SessionManager
from vellum.store import ChunkRecord, ChunkStore, Database


@pytest.fixture()
def env(tmp_path):
    database = Database(tmp_path / "vellum.db")
    registry = CorpusRegistry(database)
    store = ChunkStore(database)
    sessions = SessionManager(database, registry)
    return registry, store, sessions


def _put(store, corpus_id, path, items):
    """Store ``(text, vector)`` pairs as the chunks of *path*."""
    store.claim_dimension(len(items[0][1]))
    store.upsert_chunks(
        corpus_id,
        path,
        Fingerprint(1.0, 1),
        [
            ChunkRecord(index=idx, offset=idx, text=text, vector=vector)
            for idx, (text, vector) in enumerate(items)
        ],
    )


def test_results_sorted_by_score_with_provenance(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    _put(store, corpus.id, "a.md", [("east", [1.0, 0.0]), ("north", [0.0, 1.0])])
    _put(store, corpus.id, "b.md", [("north-east", [1.0, 1.0])])
    search = SimilaritySearch(store, sessions)

    hits = search.search(sessions.create([corpus.id]), [1.0, 0.1], top_k=3)

    assert [(hit.path, hit.chunk_index) for hit in hits] == [
        ("a.md", 0),
        ("b.md", 0),
        ("a.md", 1),
    ]
    assert hits[0].corpus_id == corpus.id
    assert hits[0].text == "east"
    assert hits[0].score > hits[1].score > hits[2].score


def test_ties_break_by_corpus_path_and_index(env):
    registry, store, sessions = env
    first = registry.create("first")
    second = registry.create("second")
    same = [1.0, 0.0]
    _put(store, second.id, "a.md", [("s", same)])
    _put(store, first.id, "b.md", [("f0", same), ("f1", same)])
    _put(store, first.id, "a.md", [("fa", same)])
    search = SimilaritySearch(store, sessions)
    session = sessions.create([first.id, second.id])

    hits = search.search(session, [2.0, 0.0], top_k=10)

    assert [(hit.corpus_id, hit.path, hit.chunk_index) for hit in hits] == [
        (first.id, "a.md", 0),
        (first.id, "b.md", 0),
        (first.id, "b.md", 1),
        (second.id, "a.md", 0),
    ]
    top_two = search.search(session, [2.0, 0.0], top_k=2)
    assert [(hit.path, hit.chunk_index) for hit in top_two] == [("a.md", 0), ("b.md", 0)]


def test_top_k_edge_cases(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    _put(store, corpus.id, "a.md", [("a", [1.0, 0.0])])
    search = SimilaritySearch(store, sessions)
    session = sessions.create([corpus.id])

    assert search.search(session, [1.0, 0.0], top_k=0) == []
    assert len(search.search(session, [1.0, 0.0], top_k=50)) == 1
    with pytest.raises(VellumError):
        search.search(session, [1.0, 0.0], top_k=-1)


def test_dimension_mismatch_is_fatal(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    _put(store, corpus.id, "a.md", [("a", [1.0, 0.0, 0.0])])
    search = SimilaritySearch(store, sessions)

    with pytest.raises(DimensionMismatchError) as excinfo:
        search.search(sessions.create([corpus.id]), [1.0, 0.0], top_k=1)
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2


def test_scope_excludes_other_corpora(env):
    registry, store, sessions = env
    inside = registry.create("inside")
    outside = registry.create("outside")
    _put(store, inside.id, "a.md", [("in", [0.0, 1.0])])
    _put(store, outside.id, "a.md", [("out", [1.0, 0.0])])
    search = SimilaritySearch(store, sessions)

    hits = search.search(sessions.create([inside.id]), [1.0, 0.0], top_k=5)

    assert [hit.corpus_id for hit in hits] == [inside.id]


def test_path_filter_and_deleted_corpus(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    _put(store, corpus.id, "docs/a.md", [("doc", [1.0, 0.0])])
    _put(store, corpus.id, "readme.md", [("readme", [1.0, 0.0])])
    search = SimilaritySearch(store, sessions)
    session = sessions.create([corpus.id], tracked=True)

    hits = search.search(session, [1.0, 0.0], top_k=5, path="docs")
    assert [hit.path for hit in hits] == ["docs/a.md"]
    assert search.search(session, [1.0, 0.0], top_k=5, path="nothing/*") == []

    registry.delete(corpus.id)
    assert search.search(sessions.resolve(session.id), [1.0, 0.0], top_k=5) == []


def test_dot_metric_uses_raw_inner_product(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    _put(store, corpus.id, "a.md", [("short", [1.0, 0.0]), ("long", [3.0, 3.0])])
    session = sessions.create([corpus.id])

    cosine_hits = SimilaritySearch(store, sessions, "cosine").search(session, [1.0, 0.0], 2)
    dot_hits = SimilaritySearch(store, sessions, "dot").search(session, [1.0, 0.0], 2)

    assert [hit.text for hit in cosine_hits] == ["short", "long"]
    assert [hit.text for hit in dot_hits] == ["long", "short"]
    assert dot_hits[0].score == pytest.approx(3.0)


def test_unknown_metric_is_rejected(env):
    _, store, sessions = env
    with pytest.raises(VellumError):
        SimilaritySearch(store, sessions, "euclidean")


def test_keyword_search_ranks_matching_chunks_only(env):
    registry, store, sessions = env
    corpus = registry.create("notes")
    other = registry.create("other")
    _put(
        store,
        corpus.id,
        "a.md",
        [("apples and pears", [1.0, 0.0]), ("nothing relevant here", [1.0, 0.0])],
    )
    _put(store, corpus.id, "b.md", [("apples apples apples", [1.0, 0.0])])
    _put(store, other.id, "c.md", [("apples everywhere", [1.0, 0.0])])
    search = SimilaritySearch(store, sessions)
    session = sessions.create([corpus.id])

    hits = search.keyword_search(session, "Apples", top_k=10)

    assert {(hit.path, hit.chunk_index) for hit in hits} == {("a.md", 0), ("b.md", 0)}
    assert hits[0].path == "b.md"
    assert all(hit.corpus_id == corpus.id for hit in hits)
    assert search.keyword_search(session, "kiwi", top_k=10) == []
    assert search.keyword_search(session, "apples", top_k=0) == []
    with pytest.raises(VellumError):
        search.keyword_search(session, "   ", top_k=3)


def test_top_indices_keeps_order_for_boundary_ties():
    scores = np.array([0.5, 0.9, 0.5, 0.5, 0.1])

    assert _top_indices(scores, 2) == [1, 0]
    assert _top_indices(scores, 3) == [1, 0, 2]
    assert _top_indices(scores, 0) == []
