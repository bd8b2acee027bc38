"""Corpus records and the registry that owns them."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .errors import DuplicateNameError, NotFoundError, VellumError
from .store import ChunkStore, Database, parse_timestamp, utcnow
from .text import Messages

logger = logging.getLogger(__name__)

_CORPUS_COLUMNS = """
    c.id,
    c.name,
    c.root_path,
    c.created_at,
    c.updated_at,
    (SELECT COUNT(*) FROM note AS n WHERE n.corpus_id = c.id) AS note_count
"""


@dataclass(slots=True)
class Corpus:
    """Named collection of notes living under an optional root directory."""

    id: int
    name: str
    root: Path | None
    note_count: int
    created_at: datetime
    updated_at: datetime


def _row_to_corpus(row: sqlite3.Row) -> Corpus:
    root = row["root_path"]
    return Corpus(
        id=int(row["id"]),
        name=row["name"],
        root=Path(root) if root else None,
        note_count=int(row["note_count"] or 0),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _not_found(ref: int | str) -> NotFoundError:
    return NotFoundError(
        Messages.ERROR_CORPUS_NOT_FOUND.format(ref=ref),
        code="corpus.not_found",
    )


class CorpusRegistry:
    """CRUD over corpora. A name, once taken, names one corpus for its lifetime."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def create(self, name: str, *, root: Path | str | None = None) -> Corpus:
        clean_name = (name or "").strip()
        if not clean_name:
            raise VellumError(Messages.ERROR_EMPTY_NAME, code="corpus.invalid_name")
        root_path = str(Path(root).expanduser().resolve()) if root is not None else None
        now = utcnow()
        try:
            with self.database.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO corpus (name, root_path, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (clean_name, root_path, now, now),
                )
                corpus_id = int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise DuplicateNameError(
                Messages.ERROR_DUPLICATE_NAME.format(name=clean_name)
            ) from exc
        logger.info("Created corpus %s (id %d)", clean_name, corpus_id)
        return self.get_by_id(corpus_id)

    def get(self, ref: int | str) -> Corpus:
        """Look a corpus up by integer id or by name."""

        if isinstance(ref, int):
            return self.get_by_id(ref)
        text = str(ref).strip()
        try:
            return self.get_by_name(text)
        except NotFoundError:
            # CLI arguments arrive as strings; fall back to a numeric id.
            if not text.isdigit():
                raise
        return self.get_by_id(int(text))

    def get_by_id(self, corpus_id: int) -> Corpus:
        with self.database.connection(query_only=True) as conn:
            row = conn.execute(
                f"SELECT {_CORPUS_COLUMNS} FROM corpus AS c WHERE c.id = ?",
                (int(corpus_id),),
            ).fetchone()
        if row is None:
            raise _not_found(corpus_id)
        return _row_to_corpus(row)

    def get_by_name(self, name: str) -> Corpus:
        with self.database.connection(query_only=True) as conn:
            row = conn.execute(
                f"SELECT {_CORPUS_COLUMNS} FROM corpus AS c WHERE c.name = ?",
                (name,),
            ).fetchone()
        if row is None:
            raise _not_found(name)
        return _row_to_corpus(row)

    def list(self) -> list[Corpus]:
        with self.database.connection(query_only=True) as conn:
            rows = conn.execute(
                f"SELECT {_CORPUS_COLUMNS} FROM corpus AS c ORDER BY c.id ASC"
            ).fetchall()
        return [_row_to_corpus(row) for row in rows]

    def delete(self, corpus_id: int) -> None:
        """Remove the corpus with its notes and chunks. Sessions are left alone."""

        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM corpus WHERE id = ?", (int(corpus_id),))
            if cursor.rowcount == 0:
                raise _not_found(corpus_id)
        logger.info("Deleted corpus %d", corpus_id)
        ChunkStore(self.database).reset_dimension()

    def set_root(self, corpus_id: int, root: Path | str) -> Corpus:
        root_path = str(Path(root).expanduser().resolve())
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "UPDATE corpus SET root_path = ?, updated_at = ? WHERE id = ?",
                (root_path, utcnow(), int(corpus_id)),
            )
            if cursor.rowcount == 0:
                raise _not_found(corpus_id)
        return self.get_by_id(corpus_id)

    def live_ids(self, corpus_ids: Iterable[int]) -> set[int]:
        ids = sorted({int(value) for value in corpus_ids})
        if not ids:
            return set()
        placeholders = ", ".join("?" for _ in ids)
        with self.database.connection(query_only=True) as conn:
            rows = conn.execute(
                f"SELECT id FROM corpus WHERE id IN ({placeholders})",
                tuple(ids),
            ).fetchall()
        return {int(row["id"]) for row in rows}
