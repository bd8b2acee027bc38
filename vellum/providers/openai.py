"""OpenAI-compatible embedding backend."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, Sequence

import numpy as np
from dotenv import load_dotenv
from openai import OpenAI

from ..text import Messages

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
_RETRYABLE_MARKERS = (
    "rate limit",
    "timeout",
    "temporar",
    "overload",
    "try again",
    "too many requests",
    "service unavailable",
)
_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 0.5
_RETRY_MAX_DELAY = 4.0


class OpenAIEmbeddingBackend:
    """Calls the ``/embeddings`` endpoint of OpenAI or a compatible server."""

    def __init__(
        self,
        *,
        model_name: str,
        api_key: str | None,
        batch_size: int | None = None,
        concurrency: int = 1,
        base_url: str | None = None,
    ) -> None:
        load_dotenv()
        if not api_key:
            raise RuntimeError(Messages.ERROR_API_KEY_MISSING)
        self.model_name = model_name
        self.batch_size = batch_size if batch_size and batch_size > 0 else None
        self.concurrency = max(int(concurrency or 1), 1)
        client_kwargs: dict[str, object] = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url.rstrip("/")
        self._client = OpenAI(**client_kwargs)
        self._executor: ThreadPoolExecutor | None = None

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        batches = list(_batched(texts, self.batch_size))
        if self.concurrency > 1 and len(batches) > 1:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.concurrency,
                    thread_name_prefix="vellum-openai",
                )
            # map() keeps batch order.
            results = list(self._executor.map(self._embed_batch, batches))
        else:
            results = [self._embed_batch(batch) for batch in batches]
        vectors = [vector for batch in results for vector in batch]
        if not vectors:
            raise RuntimeError(Messages.ERROR_NO_EMBEDDINGS)
        return np.vstack(vectors)

    def _embed_batch(self, batch: Sequence[str]) -> list[np.ndarray]:
        attempt = 0
        while True:
            try:
                response = self._client.embeddings.create(
                    model=self.model_name,
                    input=list(batch),
                )
                break
            except Exception as exc:  # pragma: no cover - API client variations
                if _is_retryable(exc) and attempt < _MAX_RETRIES:
                    delay = _backoff_delay(attempt)
                    logger.debug("Retrying embeddings request in %.1fs: %s", delay, exc)
                    time.sleep(delay)
                    attempt += 1
                    continue
                message = getattr(exc, "message", None) or str(exc)
                raise RuntimeError(f"{Messages.ERROR_OPENAI_PREFIX}{message}") from exc
        data = getattr(response, "data", None) or []
        if not data:
            raise RuntimeError(Messages.ERROR_NO_EMBEDDINGS)
        ordered = sorted(data, key=lambda item: getattr(item, "index", 0))
        return [
            np.asarray(item.embedding, dtype=np.float32)
            for item in ordered
            if getattr(item, "embedding", None) is not None
        ]


def _batched(items: Sequence[str], size: int | None) -> Iterator[Sequence[str]]:
    if size is None:
        yield items
        return
    for idx in range(0, len(items), size):
        yield items[idx : idx + size]


def _backoff_delay(attempt: int) -> float:
    return min(_RETRY_MAX_DELAY, _RETRY_BASE_DELAY * (2**attempt))


def _status_code(exc: Exception) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _is_retryable(exc: Exception) -> bool:
    if _status_code(exc) in _RETRYABLE_STATUS_CODES:
        return True
    name = exc.__class__.__name__.lower()
    if "ratelimit" in name or "timeout" in name:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)
