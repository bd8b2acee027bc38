"""Glob listing of the note paths visible through a session."""

from __future__ import annotations

from typing import Callable

from pathspec.gitignore import GitIgnoreSpec

from .session import QuerySession, SessionManager
from .store import ChunkStore

_GLOB_CHARS = frozenset("*?[]")
MATCH_ALL = "*"


def normalize_pattern(pattern: str | None) -> str:
    """Return *pattern* as a root-anchored gitwildmatch line.

    ``*`` and ``?`` stay within one path segment and ``**`` crosses
    segments. A pattern with no trailing glob character names a file or a
    directory prefix, so ``docs`` and ``docs/`` both select everything under
    ``docs``.
    """

    raw = (pattern or "").strip().replace("\\", "/")
    while raw.startswith("./"):
        raw = raw[2:]
    raw = raw.lstrip("/")
    if not raw:
        raw = MATCH_ALL
    if raw[-1] not in _GLOB_CHARS:
        raw = raw.rstrip("/")
    return f"/{raw}"


def path_matcher(pattern: str | None) -> Callable[[str], bool]:
    spec = GitIgnoreSpec.from_lines([normalize_pattern(pattern)])
    return spec.match_file


class PathResolver:
    def __init__(self, store: ChunkStore, sessions: SessionManager) -> None:
        self.store = store
        self.sessions = sessions

    def list(self, session: QuerySession, pattern: str | None = MATCH_ALL) -> dict[int, list[str]]:
        """Map each in-scope corpus id to its sorted matching paths.

        Corpora without a match are left out, so an empty dict is a normal
        answer.
        """

        live = self.sessions.effective(session)
        if not live.scope:
            return {}
        matches = path_matcher(pattern)
        by_corpus = self.store.paths_for(live.scope)
        listing: dict[int, list[str]] = {}
        for corpus_id in live.scope:
            selected = sorted({path for path in by_corpus.get(corpus_id, ()) if matches(path)})
            if selected:
                listing[corpus_id] = selected
        return listing
