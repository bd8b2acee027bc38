"""Typed failures raised by the Vellum core."""

from __future__ import annotations


class VellumError(ValueError):
    """Base class for every failure the core reports to its callers."""

    code = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class DuplicateNameError(VellumError):
    code = "corpus.duplicate_name"


class NotFoundError(VellumError):
    code = "not_found"


class InvalidScopeError(VellumError):
    code = "session.invalid_scope"


class DimensionMismatchError(VellumError):
    code = "search.dimension_mismatch"

    def __init__(self, message: str, *, expected: int, actual: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class EmbeddingFailure(VellumError):
    """Model call failed or timed out; recovered per path while indexing."""

    code = "index.embedding_failure"


class IOFailure(VellumError):
    code = "io.failure"

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


def error_info(exc: BaseException) -> dict[str, str]:
    """Return a ``{code, message}`` mapping suitable for a wire response."""

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return {"code": code, "message": str(exc)}
    return {"code": "error", "message": str(exc)}
