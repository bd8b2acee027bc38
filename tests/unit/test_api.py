from __future__ import annotations

import numpy as np
import pytest

from vellum import NoteStore
from vellum.api import data_dir_context
from vellum.config import Config
from vellum.errors import (
    DuplicateNameError,
    InvalidScopeError,
    NotFoundError,
    VellumError,
    error_info,
)

VOCAB = ("apple", "banana", "cherry", "dog")


class VocabBackend:
    """Bag-of-words embedding over a tiny fixed vocabulary."""

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, texts):
        self.calls += 1
        rows = []
        for text in texts:
            lowered = text.lower()
            rows.append([lowered.count(word) + 0.01 for word in VOCAB])
        return np.asarray(rows, dtype=np.float32)


@pytest.fixture()
def notes(tmp_path):
    root = tmp_path / "notes"
    (root / "docs").mkdir(parents=True)
    (root / "fruit.md").write_text("apple apple banana", encoding="utf-8")
    (root / "docs" / "pets.md").write_text("dog dog dog", encoding="utf-8")
    (root / "docs" / "cherry.md").write_text("cherry pie", encoding="utf-8")
    return root


@pytest.fixture()
def store(tmp_path):
    return NoteStore(data_dir=tmp_path / "data", backend=VocabBackend(), use_config=False)


def test_end_to_end_semantic_search(store, notes):
    corpus = store.create_corpus("notes", root=notes)
    result = store.refresh(corpus.id)
    assert result.added == ["docs/cherry.md", "docs/pets.md", "fruit.md"]

    session = store.create_session([corpus.name])
    hits = store.search(session, "dogs please", top_k=2)

    assert hits[0].path == "docs/pets.md"
    assert hits[0].corpus_id == corpus.id
    assert len(hits) == 2
    assert store.get_corpus("notes").note_count == 3


def test_auto_index_picks_up_new_notes(store, notes):
    corpus = store.create_corpus("notes", root=notes)
    session = store.create_session([corpus.id], tracked=True)

    assert store.search(session.id, "apple", top_k=1)[0].path == "fruit.md"

    (notes / "more.md").write_text("apple apple apple apple", encoding="utf-8")
    store.file_cache.clear()
    hits = store.search(session.id, "apple", top_k=1)
    assert hits[0].path == "more.md"


def test_auto_index_can_be_disabled(tmp_path, notes):
    store = NoteStore(
        data_dir=tmp_path / "data",
        backend=VocabBackend(),
        config={"auto_index": False},
        use_config=False,
    )
    corpus = store.create_corpus("notes", root=notes)
    session = store.create_session([corpus.id])

    assert store.keyword_search(session, "apple") == []
    store.refresh(corpus.id)
    assert [hit.path for hit in store.keyword_search(session, "apple")] == ["fruit.md"]


def test_list_paths_and_read_note(store, notes):
    corpus = store.create_corpus("notes", root=notes)
    store.refresh(corpus.id)
    session = store.create_session([corpus.id])

    assert store.list_paths(session, "docs") == {corpus.id: ["docs/cherry.md", "docs/pets.md"]}
    assert store.read_note("notes", "docs/pets.md") == "dog dog dog"
    with pytest.raises(NotFoundError):
        store.read_note(corpus.id, "docs/missing.md")


def test_vector_search_with_explicit_query_vector(store, notes):
    corpus = store.create_corpus("notes", root=notes)
    store.refresh(corpus.id)
    session = store.create_session([corpus.id])

    hits = store.search_vector(session, [0.0, 0.0, 1.0, 0.0], top_k=1)

    assert hits[0].path == "docs/cherry.md"


def test_corpus_management_and_project_aliases(store, tmp_path):
    created = store.create_project("journal", root=tmp_path)
    assert store.get_project(created.id).name == "journal"
    assert [item.name for item in store.list_projects()] == ["journal"]

    with pytest.raises(DuplicateNameError) as excinfo:
        store.create_corpus("journal")
    assert error_info(excinfo.value) == {
        "code": "corpus.duplicate_name",
        "message": str(excinfo.value),
    }

    store.delete_project("journal")
    assert store.list_corpora() == []
    with pytest.raises(NotFoundError):
        store.delete_corpus("journal")


def test_deleting_corpus_needs_no_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("VELLUM_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    store = NoteStore(data_dir=tmp_path / "data", use_config=False)

    corpus = store.create_corpus("scratch")
    store.delete_corpus(corpus.id)

    assert store.list_corpora() == []


def test_unknown_scope_names_are_invalid(store):
    store.create_corpus("real")

    with pytest.raises(InvalidScopeError):
        store.create_session(["real", "imaginary"])


def test_tracked_sessions_survive_a_new_facade(tmp_path, notes):
    first = NoteStore(data_dir=tmp_path / "data", backend=VocabBackend(), use_config=False)
    corpus = first.create_corpus("notes", root=notes)
    session = first.create_session([corpus.id], tracked=True)

    second = NoteStore(data_dir=tmp_path / "data", backend=VocabBackend(), use_config=False)

    assert second.resolve_session(session.id).scope == (corpus.id,)
    assert [item.id for item in second.recent_sessions()] == [session.id]
    second.discard_session(session.id)
    with pytest.raises(NotFoundError):
        first.resolve_session(session.id)


def test_refresh_binds_new_root(store, notes, tmp_path):
    corpus = store.create_corpus("notes")
    with pytest.raises(VellumError):
        store.refresh(corpus.id)

    result = store.refresh(corpus.id, root=notes, clear_cache=True)

    assert len(result.added) == 3
    assert store.get_corpus(corpus.id).root == notes.resolve()


def test_refresh_many_and_default_top_k(tmp_path, notes):
    other = tmp_path / "other"
    other.mkdir()
    (other / "x.md").write_text("banana", encoding="utf-8")
    store = NoteStore(
        data_dir=tmp_path / "data",
        backend=VocabBackend(),
        config=Config(top_k=1, auto_index=False),
    )
    store.create_corpus("notes", root=notes)
    store.create_corpus("other", root=other)

    results = store.refresh_many(["notes", "other"])
    session = store.create_session(["notes", "other"])

    assert [len(result.added) for result in results] == [3, 1]
    assert len(store.search(session, "banana")) == 1


def test_invalid_config_payload_is_a_vellum_error(tmp_path):
    with pytest.raises(VellumError) as excinfo:
        NoteStore(data_dir=tmp_path, config={"similarity": "euclidean"}, use_config=False)
    assert excinfo.value.code == "config.invalid"


def test_data_dir_context_scopes_database(tmp_path):
    with data_dir_context(tmp_path / "scoped"):
        store = NoteStore(backend=VocabBackend(), use_config=False)

    assert store.database.path == (tmp_path / "scoped").resolve() / "vellum.db"


def test_read_note_does_not_leave_stale_text_for_the_indexer(tmp_path, notes):
    first = NoteStore(data_dir=tmp_path / "data", backend=VocabBackend(), use_config=False)
    corpus = first.create_corpus("notes", root=notes)
    first.refresh(corpus.id)

    second = NoteStore(data_dir=tmp_path / "data", backend=VocabBackend(), use_config=False)
    assert second.read_note("notes", "fruit.md") == "apple apple banana"
    (notes / "fruit.md").write_text("banana cherry dog and more", encoding="utf-8")

    second.refresh(corpus.id, clear_cache=True)

    texts = [
        chunk.text
        for chunk in second.store.chunks_for([corpus.id])
        if chunk.path == "fruit.md"
    ]
    assert texts == ["banana cherry dog and more"]
