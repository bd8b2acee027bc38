"""Vellum package initialization."""

from __future__ import annotations

__version__ = "0.1.0"

from .api import NoteStore, data_dir_context, set_data_dir
from .errors import (
    DimensionMismatchError,
    DuplicateNameError,
    EmbeddingFailure,
    InvalidScopeError,
    IOFailure,
    NotFoundError,
    VellumError,
)

__all__ = [
    "__version__",
    "DimensionMismatchError",
    "DuplicateNameError",
    "EmbeddingFailure",
    "IOFailure",
    "InvalidScopeError",
    "NotFoundError",
    "NoteStore",
    "VellumError",
    "data_dir_context",
    "get_version",
    "set_data_dir",
]


def get_version() -> str:
    """Return the current package version."""
    return __version__
