"""Embedding capability: provider protocol, timeouts and dimension enforcement."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, Protocol, Sequence

import numpy as np

from .config import (
    DEFAULT_EMBED_TIMEOUT,
    SUPPORTED_PROVIDERS,
    Config,
    resolve_api_key,
    resolve_default_model,
)
from .errors import DimensionMismatchError, EmbeddingFailure, VellumError
from .text import Messages

if TYPE_CHECKING:  # pragma: no cover
    from .store import ChunkStore

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    """Minimal protocol for components that can embed text batches."""

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return embeddings for *texts* as a 2D numpy array."""
        raise NotImplementedError  # pragma: no cover


class Embedder:
    """Wrap a backend with a call timeout and a store-wide vector dimension.

    The dimension is discovered from the first successful call and recorded in
    the store; every later call must return vectors of that size.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        store: "ChunkStore | None" = None,
        *,
        timeout: float = DEFAULT_EMBED_TIMEOUT,
    ) -> None:
        self.backend = backend
        self.store = store
        self.timeout = timeout
        self.calls = 0
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        if self.store is not None:
            return self.store.dimension()
        return self._dimension

    def embed_chunks(self, texts: Sequence[str]) -> np.ndarray:
        """Embed chunk texts with a single backend call."""
        if not texts:
            return np.empty((0, self.dimension or 0), dtype=np.float32)
        return self._embed(list(texts))

    def embed_query(self, text: str) -> np.ndarray:
        clean = (text or "").strip()
        if not clean:
            raise VellumError(Messages.ERROR_EMPTY_QUERY, code="search.empty_query")
        return self._embed([clean])[0]

    def _embed(self, texts: list[str]) -> np.ndarray:
        # A fresh worker per call so a hung request cannot block the next one.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vellum-embed")
        try:
            future = executor.submit(self.backend.embed, texts)
            self.calls += 1
            try:
                raw = future.result(timeout=self.timeout)
            except FutureTimeoutError as exc:
                logger.warning("Embedding call timed out after %ss", self.timeout)
                raise EmbeddingFailure(
                    Messages.ERROR_EMBED_TIMEOUT.format(seconds=self.timeout)
                ) from exc
            except EmbeddingFailure:
                raise
            except Exception as exc:
                raise EmbeddingFailure(
                    Messages.ERROR_EMBED_FAILED.format(reason=exc)
                ) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        vectors = np.asarray(raw, dtype=np.float32)
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts) or vectors.shape[1] == 0:
            raise EmbeddingFailure(
                Messages.ERROR_EMBED_COUNT.format(
                    actual=vectors.shape[0] if vectors.ndim else 0,
                    expected=len(texts),
                )
            )
        self._enforce_dimension(int(vectors.shape[1]))
        return vectors

    def _enforce_dimension(self, actual: int) -> None:
        expected = self.dimension
        if expected is None:
            if self.store is not None:
                expected = self.store.claim_dimension(actual)
            else:
                self._dimension = expected = actual
        if actual != expected:
            raise DimensionMismatchError(
                Messages.ERROR_EMBED_DIMENSION_DRIFT.format(actual=actual, expected=expected),
                expected=expected,
                actual=actual,
            )


def create_backend(config: Config) -> EmbeddingBackend:
    """Build the provider backend selected by *config*."""

    provider = (config.provider or "").strip().lower()
    model_name = resolve_default_model(provider, config.model)
    if provider == "local":
        from .providers.local import LocalEmbeddingBackend

        return LocalEmbeddingBackend(model_name=model_name, batch_size=config.batch_size)
    if provider in {"openai", "custom"}:
        from .providers.openai import OpenAIEmbeddingBackend

        base_url = (config.base_url or "").strip() or None
        if provider == "custom" and base_url is None:
            raise RuntimeError(Messages.ERROR_CUSTOM_BASE_URL_REQUIRED)
        return OpenAIEmbeddingBackend(
            model_name=model_name,
            api_key=resolve_api_key(config.api_key, provider),
            batch_size=config.batch_size,
            concurrency=config.embed_concurrency,
            base_url=base_url,
        )
    allowed = ", ".join(SUPPORTED_PROVIDERS)
    raise RuntimeError(Messages.ERROR_PROVIDER_INVALID.format(value=provider, allowed=allowed))
