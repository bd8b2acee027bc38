"""Query sessions: the set of corpora a search or listing is allowed to see."""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Iterator
from uuid import uuid4

from .corpus import CorpusRegistry
from .errors import InvalidScopeError, NotFoundError
from .store import Database, parse_timestamp, utcnow
from .text import Messages

EPHEMERAL_PREFIX = "ephemeral-"
DEFAULT_RECENT_LIMIT = 10


@dataclass(frozen=True, slots=True)
class QuerySession:
    id: int | str
    scope: tuple[int, ...]
    tracked: bool
    created_at: datetime


def _session_not_found(session_id: object) -> NotFoundError:
    return NotFoundError(
        Messages.ERROR_SESSION_NOT_FOUND.format(id=session_id),
        code="session.not_found",
    )


def _tracked_id(session_id: int | str) -> int | None:
    if isinstance(session_id, bool):
        return None
    if isinstance(session_id, int):
        return session_id
    text = str(session_id).strip()
    return int(text) if text.isdigit() else None


def _row_to_session(row) -> QuerySession:
    return QuerySession(
        id=int(row["id"]),
        scope=tuple(sorted(int(value) for value in json.loads(row["corpora"]))),
        tracked=True,
        created_at=parse_timestamp(row["created_at"]),
    )


class SessionManager:
    """Creates and resolves sessions.

    Ephemeral sessions exist only as the returned value. Tracked sessions are
    stored and can be resolved by id later; their scope is filtered against
    live corpora every time it is read, so deleting a corpus never deletes a
    session.
    """

    def __init__(self, database: Database, registry: CorpusRegistry) -> None:
        self.database = database
        self.registry = registry

    def create(self, scope: Iterable[int], *, tracked: bool = False) -> QuerySession:
        ids = tuple(sorted({int(value) for value in scope}))
        if not ids:
            raise InvalidScopeError(Messages.ERROR_SCOPE_EMPTY)
        dead = sorted(set(ids) - self.registry.live_ids(ids))
        if dead:
            raise InvalidScopeError(
                Messages.ERROR_SCOPE_DEAD.format(ids=", ".join(str(value) for value in dead))
            )
        created_at = utcnow()
        if not tracked:
            return QuerySession(
                id=f"{EPHEMERAL_PREFIX}{uuid4().hex}",
                scope=ids,
                tracked=False,
                created_at=parse_timestamp(created_at),
            )
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO query_session (corpora, created_at) VALUES (?, ?)",
                (json.dumps(list(ids)), created_at),
            )
            session_id = int(cursor.lastrowid)
        return QuerySession(
            id=session_id,
            scope=ids,
            tracked=True,
            created_at=parse_timestamp(created_at),
        )

    @contextmanager
    def ephemeral(self, scope: Iterable[int]) -> Iterator[QuerySession]:
        yield self.create(scope, tracked=False)

    def resolve(self, session_id: int | str) -> QuerySession:
        """Return a tracked session with its scope reduced to live corpora."""

        tracked_id = _tracked_id(session_id)
        if tracked_id is None:
            raise _session_not_found(session_id)
        with self.database.connection(query_only=True) as conn:
            row = conn.execute(
                "SELECT id, corpora, created_at FROM query_session WHERE id = ?",
                (tracked_id,),
            ).fetchone()
        if row is None:
            raise _session_not_found(session_id)
        return self.effective(_row_to_session(row))

    def effective(self, session: QuerySession) -> QuerySession:
        """Drop corpora deleted since *session* was created. The result may be empty."""

        live = self.registry.live_ids(session.scope)
        if len(live) == len(session.scope):
            return session
        return replace(session, scope=tuple(value for value in session.scope if value in live))

    def discard(self, session_id: int | str) -> None:
        tracked_id = _tracked_id(session_id)
        if tracked_id is None:
            raise _session_not_found(session_id)
        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM query_session WHERE id = ?", (tracked_id,))
            if cursor.rowcount == 0:
                raise _session_not_found(session_id)

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[QuerySession]:
        with self.database.connection(query_only=True) as conn:
            rows = conn.execute(
                "SELECT id, corpora, created_at FROM query_session ORDER BY id DESC LIMIT ?",
                (max(int(limit), 0),),
            ).fetchall()
        return [self.effective(_row_to_session(row)) for row in rows]
