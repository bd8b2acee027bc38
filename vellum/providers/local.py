"""Local embedding backend running a small ONNX model through fastembed."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ..config import local_model_dir
from ..text import Messages

logger = logging.getLogger(__name__)


def _load_fastembed():
    try:
        from fastembed import TextEmbedding
    except ImportError as exc:
        raise RuntimeError(Messages.ERROR_LOCAL_DEP_MISSING) from exc
    return TextEmbedding


class LocalEmbeddingBackend:
    """Embeds text on this machine; the model is downloaded once into the config dir."""

    def __init__(self, *, model_name: str, batch_size: int | None = None) -> None:
        self.model_name = model_name
        self.batch_size = batch_size if batch_size and batch_size > 0 else 256
        TextEmbedding = _load_fastembed()
        cache_dir = local_model_dir()
        cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Loading local model %s from %s", model_name, cache_dir)
        try:
            self._model = TextEmbedding(model_name=model_name, cache_dir=str(cache_dir))
        except Exception as exc:
            raise RuntimeError(
                Messages.ERROR_LOCAL_MODEL_LOAD.format(model=model_name, reason=str(exc))
            ) from exc

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        try:
            vectors = [
                np.asarray(embedding, dtype=np.float32)
                for embedding in self._model.embed(list(texts), batch_size=self.batch_size)
            ]
        except Exception as exc:
            raise RuntimeError(
                Messages.ERROR_LOCAL_MODEL_EMBED.format(reason=str(exc))
            ) from exc
        if not vectors:
            raise RuntimeError(Messages.ERROR_NO_EMBEDDINGS)
        return np.vstack(vectors)
