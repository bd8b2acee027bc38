import re

import numpy as np
import pytest
from typer.testing import CliRunner

from vellum.api import NoteStore
from vellum.cli import app
from vellum.text import Messages

ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
VOCAB = ("apple", "banana", "cherry", "dog")


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


class VocabBackend:
    def embed(self, texts):
        return np.asarray(
            [[text.lower().count(word) + 0.01 for word in VOCAB] for text in texts],
            dtype=np.float32,
        )


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    monkeypatch.setattr("vellum.config.CONFIG_DIR", config_dir)
    monkeypatch.setattr("vellum.config.CONFIG_FILE", config_dir / "config.json")
    monkeypatch.setattr("vellum.store.DATA_DIR", tmp_path / "default-data")
    return config_dir


@pytest.fixture()
def fake_store(tmp_path, monkeypatch):
    data_dir = tmp_path / "data"

    def build(_data_dir):
        return NoteStore(data_dir=data_dir, backend=VocabBackend(), use_config=False)

    monkeypatch.setattr("vellum.cli._build_store", build)
    return build


@pytest.fixture()
def notes(tmp_path):
    root = tmp_path / "notes"
    (root / "docs").mkdir(parents=True)
    (root / "fruit.md").write_text("apple banana", encoding="utf-8")
    (root / "docs" / "pets.md").write_text("dog dog", encoding="utf-8")
    return root


def test_corpus_lifecycle(fake_store, notes):
    runner = CliRunner()

    created = runner.invoke(app, ["corpus", "create", "notes", "--root", str(notes)])
    assert created.exit_code == 0
    assert "Created corpus notes" in strip_ansi(created.stdout)

    duplicate = runner.invoke(app, ["corpus", "create", "notes"])
    assert duplicate.exit_code == 1
    assert "Corpus already exists: notes" in strip_ansi(duplicate.stdout)

    listed = runner.invoke(app, ["corpus", "list"])
    assert listed.exit_code == 0
    assert Messages.TABLE_CORPORA_TITLE in strip_ansi(listed.stdout)
    assert "notes" in strip_ansi(listed.stdout)

    deleted = runner.invoke(app, ["corpus", "delete", "notes"])
    assert deleted.exit_code == 0
    empty = runner.invoke(app, ["corpus", "list"])
    assert Messages.INFO_NO_CORPORA in strip_ansi(empty.stdout)

    missing = runner.invoke(app, ["corpus", "delete", "notes"])
    assert missing.exit_code == 1


def test_index_then_search_and_list(fake_store, notes):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "notes", "--root", str(notes)])

    indexed = runner.invoke(app, ["index"])
    assert indexed.exit_code == 0
    assert "notes" in strip_ansi(indexed.stdout)
    assert fake_store(None).get_corpus("notes").note_count == 2

    listing = runner.invoke(app, ["ls", "docs", "--corpus", "notes"])
    assert listing.exit_code == 0
    output = strip_ansi(listing.stdout)
    assert "docs/pets.md" in output
    assert "fruit.md" not in output

    found = runner.invoke(app, ["search", "my dog", "--top", "1"])
    assert found.exit_code == 0
    output = strip_ansi(found.stdout)
    assert Messages.TABLE_RESULTS_TITLE in output
    assert "docs/pets.md" in output
    assert "fruit.md" not in output


def test_keyword_search_and_path_filter(fake_store, notes):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "notes", "--root", str(notes)])

    found = runner.invoke(app, ["search", "banana", "--keyword"])
    assert found.exit_code == 0
    assert "fruit.md" in strip_ansi(found.stdout)

    filtered = runner.invoke(app, ["search", "banana", "--keyword", "--path", "docs"])
    assert filtered.exit_code == 0
    assert Messages.INFO_NO_RESULTS in strip_ansi(filtered.stdout)


def test_tracked_session_can_be_reused(fake_store, notes):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "notes", "--root", str(notes)])

    tracked = runner.invoke(app, ["search", "apple", "--track"])
    assert tracked.exit_code == 0
    match = re.search(r"Tracked session (\d+)", strip_ansi(tracked.stdout))
    assert match is not None
    session_id = match.group(1)

    reused = runner.invoke(app, ["ls", "--session", session_id])
    assert reused.exit_code == 0
    assert "fruit.md" in strip_ansi(reused.stdout)

    listed = runner.invoke(app, ["sessions"])
    assert listed.exit_code == 0
    assert Messages.TABLE_SESSIONS_TITLE in strip_ansi(listed.stdout)

    unknown = runner.invoke(app, ["ls", "--session", "999"])
    assert unknown.exit_code == 1


def test_cat_prints_note(fake_store, notes):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "notes", "--root", str(notes)])
    runner.invoke(app, ["index", "notes"])

    shown = runner.invoke(app, ["cat", "notes", "docs/pets.md"])
    assert shown.exit_code == 0
    assert shown.stdout.strip() == "dog dog"

    missing = runner.invoke(app, ["cat", "notes", "nope.md"])
    assert missing.exit_code == 1
    assert "Note not found" in strip_ansi(missing.stdout)


def test_index_root_requires_single_corpus(fake_store, notes):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "a"])
    runner.invoke(app, ["corpus", "create", "b"])

    result = runner.invoke(app, ["index", "a", "b", "--root", str(notes)])
    assert result.exit_code == 1
    assert Messages.ERROR_ROOT_NEEDS_ONE_CORPUS in strip_ansi(result.stdout)

    bound = runner.invoke(app, ["index", "a", "--root", str(notes)])
    assert bound.exit_code == 0


def test_unknown_corpus_in_scope_fails(fake_store):
    runner = CliRunner()
    runner.invoke(app, ["corpus", "create", "real"])

    result = runner.invoke(app, ["search", "apple", "--corpus", "imaginary"])
    assert result.exit_code == 1


def test_data_dir_option_uses_real_store(tmp_path):
    runner = CliRunner()
    data_dir = tmp_path / "explicit"

    created = runner.invoke(app, ["--data-dir", str(data_dir), "corpus", "create", "journal"])
    assert created.exit_code == 0
    assert (data_dir / "vellum.db").exists()

    listed = runner.invoke(app, ["--data-dir", str(data_dir), "corpus", "list"])
    assert "journal" in strip_ansi(listed.stdout)
