from __future__ import annotations

import os

import numpy as np
import pytest

from vellum import NoteStore
from vellum.file_cache import Fingerprint


class CountingBackend:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, texts):
        self.calls += 1
        return np.asarray(
            [[float(len(text)), float(text.count("e") + 1), 1.0] for text in texts],
            dtype=np.float32,
        )


@pytest.fixture()
def backend():
    return CountingBackend()


@pytest.fixture()
def store(tmp_path, backend):
    return NoteStore(
        data_dir=tmp_path / "data",
        backend=backend,
        config={"auto_index": False},
        use_config=False,
    )


def test_touch_re_embeds_two_paragraph_note(store, backend, tmp_path):
    root = tmp_path / "notes"
    root.mkdir()
    note = root / "a.md"
    note.write_text("First paragraph here.\n\nSecond paragraph here.\n", encoding="utf-8")
    corpus = store.create_corpus("notes", root=root)

    store.refresh(corpus.id)
    stat = note.stat()
    chunks = store.store.chunks_for([corpus.id])
    assert len(chunks) == 2
    assert {chunk.fingerprint for chunk in chunks} == {Fingerprint(stat.st_mtime, stat.st_size)}
    assert backend.calls == 1

    os.utime(note, (stat.st_atime, stat.st_mtime + 5))
    result = store.refresh(corpus.id, clear_cache=True)

    assert result.modified == ["a.md"]
    assert backend.calls == 2


def test_second_refresh_without_changes_costs_nothing(store, backend, tmp_path):
    root = tmp_path / "notes"
    root.mkdir()
    for idx in range(5):
        (root / f"n{idx}.md").write_text(f"note number {idx}", encoding="utf-8")
    corpus = store.create_corpus("notes", root=root)

    store.refresh(corpus.id)
    calls = backend.calls
    result = store.refresh(corpus.id, clear_cache=True)

    assert backend.calls == calls
    assert len(result.unchanged) == 5


def test_changed_note_leaves_no_stale_chunks(store, tmp_path):
    root = tmp_path / "notes"
    root.mkdir()
    note = root / "a.md"
    note.write_text("stale one\n\nstale two", encoding="utf-8")
    corpus = store.create_corpus("notes", root=root)
    store.refresh(corpus.id)

    note.write_text("fresh text that is longer than before", encoding="utf-8")
    store.refresh(corpus.id, clear_cache=True)
    session = store.create_session([corpus.id])

    hits = store.search_vector(session, [1.0, 1.0, 1.0], top_k=10)
    assert [hit.text for hit in hits] == ["fresh text that is longer than before"]
    assert store.keyword_search(session, "stale") == []


def test_scope_isolation_and_corpus_deletion(store, tmp_path):
    first_root = tmp_path / "first"
    second_root = tmp_path / "second"
    for root in (first_root, second_root):
        (root / "docs").mkdir(parents=True)
        (root / "docs" / "shared.md").write_text(f"from {root.name}", encoding="utf-8")
    first = store.create_corpus("first", root=first_root)
    second = store.create_corpus("second", root=second_root)
    store.refresh_many([first.id, second.id])
    session = store.create_session([first.id], tracked=True)

    assert store.list_paths(session, "docs") == {first.id: ["docs/shared.md"]}
    assert {hit.corpus_id for hit in store.search_vector(session, [1.0, 1.0, 1.0], 10)} == {
        first.id
    }

    store.delete_corpus(first.id)

    survivor = store.resolve_session(session.id)
    assert survivor.id == session.id
    assert store.list_paths(survivor) == {}
    assert store.search_vector(survivor, [1.0, 1.0, 1.0], 10) == []
    assert store.list_paths(store.create_session([second.id])) == {
        second.id: ["docs/shared.md"]
    }


def test_top_k_bounds_never_error(store, tmp_path):
    root = tmp_path / "notes"
    root.mkdir()
    (root / "a.md").write_text("alpha", encoding="utf-8")
    (root / "b.md").write_text("beta beta", encoding="utf-8")
    corpus = store.create_corpus("notes", root=root)
    store.refresh(corpus.id)
    session = store.create_session([corpus.id])

    assert store.search_vector(session, [1.0, 1.0, 1.0], top_k=0) == []
    hits = store.search_vector(session, [1.0, 1.0, 1.0], top_k=100)
    assert len(hits) == 2
    assert hits[0].score >= hits[1].score
