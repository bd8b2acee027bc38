"""Similarity ranking of stored chunks within a session scope."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .config import DEFAULT_SIMILARITY, SUPPORTED_SIMILARITY
from .errors import DimensionMismatchError, VellumError
from .paths import path_matcher
from .session import QuerySession, SessionManager
from .store import ChunkRef, ChunkStore
from .text import Messages

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_BM25_K1 = 1.5
_BM25_B = 0.75


@dataclass(slots=True)
class SearchHit:
    """Container describing a single ranked chunk."""

    corpus_id: int
    path: str
    chunk_index: int
    offset: int
    score: float
    text: str


def _validate_top_k(top_k: int) -> int:
    limit = int(top_k)
    if limit < 0:
        raise VellumError(Messages.ERROR_TOP_K_NEGATIVE, code="search.invalid_top_k")
    return limit


def _top_indices(scores: np.ndarray, limit: int) -> list[int]:
    """Best *limit* indices by score; equal scores keep their storage order."""
    if limit <= 0:
        return []
    if limit >= scores.size:
        return sorted(range(scores.size), key=lambda idx: (-scores[idx], idx))
    indices = np.argpartition(-scores, limit - 1)[:limit]
    # argpartition may split a tie at the boundary arbitrarily.
    threshold = scores[indices].min()
    candidates = np.flatnonzero(scores >= threshold)
    return sorted(candidates.tolist(), key=lambda idx: (-scores[idx], idx))[:limit]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hit(ref: ChunkRef, score: float) -> SearchHit:
    return SearchHit(
        corpus_id=ref.corpus_id,
        path=ref.path,
        chunk_index=ref.index,
        offset=ref.offset,
        score=float(score),
        text=ref.text,
    )


class SimilaritySearch:
    """Rank chunks of the corpora in a session against a query.

    The metric is fixed per instance: ``cosine`` compares directions only,
    ``dot`` is the raw inner product and is only meaningful for providers
    that return normalized vectors.
    """

    def __init__(
        self,
        store: ChunkStore,
        sessions: SessionManager,
        metric: str = DEFAULT_SIMILARITY,
    ) -> None:
        normalized = (metric or "").strip().lower()
        if normalized not in SUPPORTED_SIMILARITY:
            raise VellumError(
                Messages.ERROR_METRIC_INVALID.format(
                    value=metric, allowed=", ".join(SUPPORTED_SIMILARITY)
                ),
                code="config.invalid_metric",
            )
        self.store = store
        self.sessions = sessions
        self.metric = normalized

    def search(
        self,
        session: QuerySession,
        query_vector: Sequence[float] | np.ndarray,
        top_k: int,
        *,
        path: str | None = None,
    ) -> list[SearchHit]:
        limit = _validate_top_k(top_k)
        query = np.asarray(query_vector, dtype=np.float32).ravel()
        expected = self.store.dimension()
        if expected is not None and query.size != expected:
            raise DimensionMismatchError(
                Messages.ERROR_DIMENSION_MISMATCH.format(actual=query.size, expected=expected),
                expected=expected,
                actual=int(query.size),
            )
        live = self.sessions.effective(session)
        if limit == 0 or not live.scope:
            return []
        refs, matrix = self.store.vectors_for(live.scope)
        if path is not None:
            matches = path_matcher(path)
            keep = [idx for idx, ref in enumerate(refs) if matches(ref.path)]
            refs = [refs[idx] for idx in keep]
            matrix = matrix[keep] if keep else matrix[:0]
        if not refs:
            return []
        if matrix.shape[1] != query.size:
            raise DimensionMismatchError(
                Messages.ERROR_DIMENSION_MISMATCH.format(
                    actual=query.size, expected=matrix.shape[1]
                ),
                expected=int(matrix.shape[1]),
                actual=int(query.size),
            )
        if self.metric == "cosine":
            scores = cosine_similarity(query.reshape(1, -1), matrix)[0]
        else:
            scores = matrix @ query
        scores = np.asarray(scores, dtype=np.float64)
        return [_hit(refs[idx], scores[idx]) for idx in _top_indices(scores, limit)]

    def keyword_search(
        self,
        session: QuerySession,
        query: str,
        top_k: int,
        *,
        path: str | None = None,
    ) -> list[SearchHit]:
        """Rank chunk texts with BM25L; chunks sharing no term with *query* are dropped."""

        limit = _validate_top_k(top_k)
        clean_query = (query or "").strip()
        if not clean_query:
            raise VellumError(Messages.ERROR_EMPTY_QUERY, code="search.empty_query")
        query_tokens = _tokenize(clean_query)
        live = self.sessions.effective(session)
        if limit == 0 or not live.scope or not query_tokens:
            return []
        matches = path_matcher(path) if path is not None else None
        refs: list[ChunkRef] = []
        documents: list[list[str]] = []
        for chunk in self.store.chunks_for(live.scope):
            if matches is not None and not matches(chunk.path):
                continue
            tokens = _tokenize(chunk.text)
            if not tokens:
                continue
            refs.append(
                ChunkRef(
                    corpus_id=chunk.corpus_id,
                    path=chunk.path,
                    index=chunk.index,
                    offset=chunk.offset,
                    text=chunk.text,
                )
            )
            documents.append(tokens)
        if not documents:
            return []
        from rank_bm25 import BM25L

        # BM25L avoids zero-idf scores on tiny candidate sets.
        bm25 = BM25L(documents, k1=_BM25_K1, b=_BM25_B)
        scores = np.asarray(bm25.get_scores(query_tokens), dtype=np.float64)
        # BM25L's delta lifts documents without any query term above zero.
        query_terms = set(query_tokens)
        has_term = np.array([not query_terms.isdisjoint(doc) for doc in documents])
        scores[~has_term] = -np.inf
        matched = int(np.count_nonzero(has_term))
        return [
            _hit(refs[idx], scores[idx])
            for idx in _top_indices(scores, min(limit, matched))
        ]
