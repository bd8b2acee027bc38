"""Change-aware file cache shared by indexing passes."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from threading import Lock

from charset_normalizer import from_bytes

from .errors import IOFailure
from .text import Messages


@dataclass(frozen=True, slots=True)
class Fingerprint:
    """Cheap ``(mtime, size)`` proxy for "content changed"."""

    mtime: float
    size: int


class FileCache:
    """Memoize stat and read calls keyed by absolute path.

    Entries never expire. A long-lived owner must call :meth:`clear` before
    re-reading files that may have changed since they were first cached.
    Content is kept together with the fingerprint it was read under, and
    reading content caches that fingerprint too, so an indexer never pairs
    a fresh fingerprint with text read before the file changed.
    """

    def __init__(self) -> None:
        self._metadata: dict[str, Fingerprint] = {}
        self._content: dict[str, tuple[Fingerprint, str]] = {}
        self._lock = Lock()
        self.stat_calls = 0
        self.read_calls = 0

    def metadata(self, path: Path | str) -> Fingerprint:
        key = _cache_key(path)
        with self._lock:
            cached = self._metadata.get(key)
        if cached is not None:
            return cached
        try:
            stat = Path(key).stat()
        except OSError as exc:
            raise IOFailure(
                Messages.ERROR_IO.format(path=key, reason=exc.strerror or exc),
                path=key,
            ) from exc
        entry = Fingerprint(mtime=stat.st_mtime, size=stat.st_size)
        with self._lock:
            self.stat_calls += 1
            return self._metadata.setdefault(key, entry)

    def content(self, path: Path | str) -> str:
        key = _cache_key(path)
        fingerprint = self.metadata(key)
        with self._lock:
            cached = self._content.get(key)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]
        try:
            raw = Path(key).read_bytes()
        except OSError as exc:
            raise IOFailure(
                Messages.ERROR_IO.format(path=key, reason=exc.strerror or exc),
                path=key,
            ) from exc
        text = _decode(raw)
        with self._lock:
            self.read_calls += 1
            self._content[key] = (fingerprint, text)
        return text

    def clear(self) -> None:
        with self._lock:
            self._metadata.clear()
            self._content.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._metadata.keys() | self._content.keys())


def _cache_key(path: Path | str) -> str:
    return str(Path(path).expanduser().absolute())


def _decode(raw: bytes) -> str:
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    best = from_bytes(raw).best()
    if best is None:
        return raw.decode("utf-8", errors="replace")
    return str(best)
