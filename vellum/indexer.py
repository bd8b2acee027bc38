"""Bring a corpus's stored chunks into agreement with its note files."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Iterable

import numpy as np

from .chunking import split_text
from .config import IndexSettings
from .corpus import CorpusRegistry
from .embedding import Embedder
from .errors import EmbeddingFailure, IOFailure, VellumError
from .file_cache import FileCache
from .store import ChunkRecord, ChunkStore
from .text import Messages
from .utils import collect_files, note_path, resolve_directory

logger = logging.getLogger(__name__)

DEFAULT_INDEX_WORKERS = 4


class IndexStatus(str, Enum):
    EMPTY = "empty"
    UP_TO_DATE = "up_to_date"
    STORED = "stored"


@dataclass(slots=True)
class IndexResult:
    corpus_id: int
    status: IndexStatus = IndexStatus.EMPTY
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    chunks_written: int = 0
    embed_calls: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.modified or self.removed)


class CorpusLocks:
    """One lock per corpus id, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[int, Lock] = {}
        self._guard = Lock()

    def lock_for(self, corpus_id: int) -> Lock:
        with self._guard:
            lock = self._locks.get(corpus_id)
            if lock is None:
                lock = self._locks[corpus_id] = Lock()
            return lock


class Indexer:
    """Fingerprint-driven re-indexer.

    A note whose ``(mtime, size)`` matches what is stored is skipped without
    reading it. Everything else is re-read, re-chunked and re-embedded, and
    its chunk set is swapped in one transaction. Runs on the same corpus are
    serialized; different corpora may be indexed concurrently.
    """

    def __init__(
        self,
        store: ChunkStore,
        registry: CorpusRegistry,
        file_cache: FileCache,
        embedder: Embedder,
        settings: IndexSettings | None = None,
        *,
        locks: CorpusLocks | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.file_cache = file_cache
        self.embedder = embedder
        self.settings = settings or IndexSettings()
        self.locks = locks or CorpusLocks()

    def run(self, corpus_id: int, *, root: Path | str | None = None) -> IndexResult:
        with self.locks.lock_for(corpus_id):
            return self._run_locked(corpus_id, root)

    def run_many(
        self,
        corpus_ids: Iterable[int],
        *,
        max_workers: int = DEFAULT_INDEX_WORKERS,
    ) -> list[IndexResult]:
        """Index several corpora in parallel; results keep the input order."""

        ids = list(dict.fromkeys(int(value) for value in corpus_ids))
        if len(ids) <= 1:
            return [self.run(corpus_id) for corpus_id in ids]
        workers = max(1, min(len(ids), max_workers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vellum-index") as executor:
            return list(executor.map(self.run, ids))

    def _run_locked(self, corpus_id: int, root: Path | str | None) -> IndexResult:
        corpus = self.registry.get_by_id(corpus_id)
        base = root if root is not None else corpus.root
        if base is None:
            raise VellumError(
                Messages.ERROR_CORPUS_ROOT_MISSING.format(name=corpus.name),
                code="corpus.root_missing",
            )
        try:
            directory = resolve_directory(base)
        except OSError as exc:
            raise IOFailure(
                Messages.ERROR_IO.format(path=base, reason=exc), path=str(base)
            ) from exc

        files = collect_files(
            directory,
            include_hidden=self.settings.include_hidden,
            extensions=self.settings.extensions,
            respect_gitignore=self.settings.respect_gitignore,
        )
        stored = self.store.fingerprints_for(corpus_id)
        result = IndexResult(corpus_id=corpus_id)
        seen: set[str] = set()

        for file_path in files:
            rel_path = note_path(file_path, directory)
            seen.add(rel_path)
            fingerprint = self.file_cache.metadata(file_path)
            previous = stored.get(rel_path)
            if previous == fingerprint:
                result.unchanged.append(rel_path)
                continue

            pieces = split_text(
                self.file_cache.content(file_path),
                self.settings.max_chunk_chars,
            )
            if pieces:
                try:
                    result.embed_calls += 1
                    vectors = self.embedder.embed_chunks([piece.text for piece in pieces])
                except EmbeddingFailure as exc:
                    logger.warning(
                        "Skipping %s in corpus %s: %s", rel_path, corpus.name, exc
                    )
                    result.failed[rel_path] = str(exc)
                    continue
            else:
                vectors = np.empty((0, 0), dtype=np.float32)

            records = [
                ChunkRecord(index=idx, offset=piece.offset, text=piece.text, vector=vector)
                for idx, (piece, vector) in enumerate(zip(pieces, vectors))
            ]
            result.chunks_written += self.store.upsert_chunks(
                corpus_id, rel_path, fingerprint, records
            )
            if previous is None:
                result.added.append(rel_path)
            else:
                result.modified.append(rel_path)

        missing = sorted(set(stored) - seen)
        if missing:
            self.store.remove_paths(corpus_id, missing)
            result.removed = missing

        if not files and not missing:
            result.status = IndexStatus.EMPTY
        elif result.changed:
            result.status = IndexStatus.STORED
        else:
            result.status = IndexStatus.UP_TO_DATE
        logger.info(
            "Indexed corpus %s: %d added, %d modified, %d removed, %d unchanged, %d failed",
            corpus.name,
            len(result.added),
            len(result.modified),
            len(result.removed),
            len(result.unchanged),
            len(result.failed),
        )
        return result
