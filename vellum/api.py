"""Public Python API for Vellum."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import ExitStack, contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterable, Sequence

import numpy as np

from .config import (
    Config,
    config_dir_context,
    config_from_json,
    index_settings,
    load_config,
    set_config_dir,
)
from .corpus import Corpus, CorpusRegistry
from .embedding import Embedder, EmbeddingBackend, create_backend
from .errors import InvalidScopeError, NotFoundError, VellumError
from .file_cache import FileCache
from .indexer import CorpusLocks, Indexer, IndexResult
from .paths import MATCH_ALL, PathResolver
from .search import SearchHit, SimilaritySearch
from .session import QuerySession, SessionManager
from .store import ChunkStore, Database, data_dir_context as store_dir_context
from .store import default_db_path, set_data_dir as set_store_dir
from .text import Messages

SessionRef = QuerySession | int | str
CorpusRef = int | str


@contextmanager
def data_dir_context(path: Path | str | None):
    """Temporarily point both the config and the database at *path*."""
    if path is None:
        yield
        return
    with ExitStack() as stack:
        stack.enter_context(config_dir_context(path))
        stack.enter_context(store_dir_context(path))
        yield


def set_data_dir(path: Path | str | None) -> None:
    """Set the base directory for config and database files."""
    set_config_dir(path)
    set_store_dir(path)


class NoteStore:
    """Library entry point wiring the registry, indexer, sessions and search.

    The embedding backend is only built when something needs vectors, so
    listing and housekeeping work without provider credentials.
    """

    def __init__(
        self,
        *,
        data_dir: Path | str | None = None,
        config: Config | Mapping[str, object] | str | None = None,
        backend: EmbeddingBackend | None = None,
        use_config: bool = True,
    ) -> None:
        with data_dir_context(data_dir):
            base = load_config() if use_config else Config()
            if isinstance(config, Config):
                self.config = config
            elif config is not None:
                try:
                    self.config = config_from_json(config, base=base)
                except ValueError as exc:
                    raise VellumError(str(exc), code="config.invalid") from exc
            else:
                self.config = base
            self.database = Database(default_db_path())
        self.registry = CorpusRegistry(self.database)
        self.store = ChunkStore(self.database)
        self.sessions = SessionManager(self.database, self.registry)
        self.paths = PathResolver(self.store, self.sessions)
        self.searcher = SimilaritySearch(self.store, self.sessions, self.config.similarity)
        self.file_cache = FileCache()
        self.locks = CorpusLocks()
        self._backend = backend
        self._embedder: Embedder | None = None
        self._indexer: Indexer | None = None
        self._init_lock = Lock()

    @property
    def embedder(self) -> Embedder:
        with self._init_lock:
            if self._embedder is None:
                backend = self._backend or create_backend(self.config)
                self._embedder = Embedder(
                    backend,
                    self.store,
                    timeout=self.config.embed_timeout,
                )
            return self._embedder

    @property
    def indexer(self) -> Indexer:
        embedder = self.embedder
        with self._init_lock:
            if self._indexer is None:
                self._indexer = Indexer(
                    self.store,
                    self.registry,
                    self.file_cache,
                    embedder,
                    index_settings(self.config),
                    locks=self.locks,
                )
            return self._indexer

    # Corpora

    def create_corpus(self, name: str, *, root: Path | str | None = None) -> Corpus:
        return self.registry.create(name, root=root)

    def list_corpora(self) -> list[Corpus]:
        return self.registry.list()

    def get_corpus(self, ref: CorpusRef) -> Corpus:
        return self.registry.get(ref)

    def delete_corpus(self, ref: CorpusRef) -> None:
        corpus = self.registry.get(ref)
        # Waits for a running index pass on this corpus to finish.
        with self.locks.lock_for(corpus.id):
            self.registry.delete(corpus.id)

    create_project = create_corpus
    list_projects = list_corpora
    get_project = get_corpus
    delete_project = delete_corpus

    # Indexing

    def refresh(
        self,
        ref: CorpusRef,
        *,
        root: Path | str | None = None,
        clear_cache: bool = False,
    ) -> IndexResult:
        """Re-index one corpus, optionally binding it to a new *root* first."""
        corpus = self.registry.get(ref)
        if root is not None:
            corpus = self.registry.set_root(corpus.id, root)
        if clear_cache:
            self.file_cache.clear()
        return self.indexer.run(corpus.id)

    def refresh_many(
        self, refs: Iterable[CorpusRef], *, clear_cache: bool = False
    ) -> list[IndexResult]:
        ids = [self.registry.get(ref).id for ref in refs]
        if clear_cache:
            self.file_cache.clear()
        return self.indexer.run_many(ids)

    # Sessions

    def create_session(
        self, scope: Iterable[CorpusRef], *, tracked: bool = False
    ) -> QuerySession:
        return self.sessions.create(self._scope_ids(scope), tracked=tracked)

    def resolve_session(self, session_id: int | str) -> QuerySession:
        return self.sessions.resolve(session_id)

    def discard_session(self, session_id: int | str) -> None:
        self.sessions.discard(session_id)

    def recent_sessions(self, limit: int = 10) -> list[QuerySession]:
        return self.sessions.recent(limit)

    # Reading

    def list_paths(self, session: SessionRef, pattern: str | None = MATCH_ALL) -> dict[int, list[str]]:
        return self.paths.list(self._session(session), pattern)

    def search_vector(
        self,
        session: SessionRef,
        query_vector: Sequence[float] | np.ndarray,
        top_k: int | None = None,
        *,
        path: str | None = None,
    ) -> list[SearchHit]:
        return self.searcher.search(
            self._session(session),
            query_vector,
            self.config.top_k if top_k is None else top_k,
            path=path,
        )

    def search(
        self,
        session: SessionRef,
        query: str,
        top_k: int | None = None,
        *,
        path: str | None = None,
    ) -> list[SearchHit]:
        """Embed *query* and rank the session's chunks against it."""
        resolved = self._session(session)
        self._auto_refresh(resolved)
        query_vector = self.embedder.embed_query(query)
        return self.searcher.search(
            resolved,
            query_vector,
            self.config.top_k if top_k is None else top_k,
            path=path,
        )

    def keyword_search(
        self,
        session: SessionRef,
        query: str,
        top_k: int | None = None,
        *,
        path: str | None = None,
    ) -> list[SearchHit]:
        resolved = self._session(session)
        self._auto_refresh(resolved)
        return self.searcher.keyword_search(
            resolved,
            query,
            self.config.top_k if top_k is None else top_k,
            path=path,
        )

    def read_note(self, ref: CorpusRef, path: str) -> str:
        corpus = self.registry.get(ref)
        if corpus.root is None or not self.store.has_note(corpus.id, path):
            raise NotFoundError(
                Messages.ERROR_NOTE_NOT_FOUND.format(path=path),
                code="note.not_found",
            )
        return self.file_cache.content(corpus.root / path)

    def _session(self, session: SessionRef) -> QuerySession:
        if isinstance(session, QuerySession):
            return session
        return self.sessions.resolve(session)

    def _scope_ids(self, scope: Iterable[CorpusRef]) -> list[int]:
        ids: list[int] = []
        for ref in scope:
            if isinstance(ref, int):
                ids.append(ref)
                continue
            try:
                ids.append(self.registry.get(ref).id)
            except NotFoundError as exc:
                raise InvalidScopeError(Messages.ERROR_SCOPE_DEAD.format(ids=ref)) from exc
        return ids

    def _auto_refresh(self, session: QuerySession) -> None:
        if not self.config.auto_index:
            return
        live = self.sessions.effective(session)
        indexable = [
            corpus_id
            for corpus_id in live.scope
            if self.registry.get_by_id(corpus_id).root is not None
        ]
        if indexable:
            self.indexer.run_many(indexable)
