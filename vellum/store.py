"""SQLite-backed persistence for corpora, notes, chunks and sessions."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import numpy as np

from .errors import NotFoundError
from .file_cache import Fingerprint
from .text import Messages

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(os.path.expanduser("~")) / ".vellum"
DATA_DIR = DEFAULT_DATA_DIR
_DATA_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "vellum_data_dir_override",
    default=None,
)
SCHEMA_VERSION = 1
DB_FILENAME = "vellum.db"
_IN_CLAUSE_LIMIT = 900


@dataclass(slots=True)
class ChunkRecord:
    """A freshly embedded chunk about to be written for one note."""

    index: int
    offset: int
    text: str
    vector: Sequence[float]


@dataclass(slots=True)
class ChunkRef:
    """Row of the search matrix returned by :meth:`ChunkStore.vectors_for`."""

    corpus_id: int
    path: str
    index: int
    offset: int
    text: str


@dataclass(slots=True)
class Chunk:
    corpus_id: int
    path: str
    index: int
    offset: int
    text: str
    vector: np.ndarray
    fingerprint: Fingerprint


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _chunk_values(values: Sequence[object], size: int) -> Iterable[Sequence[object]]:
    for idx in range(0, len(values), size):
        yield values[idx : idx + size]


def _resolve_data_dir() -> Path:
    override = _DATA_DIR_OVERRIDE.get()
    return override if override is not None else DATA_DIR


@contextmanager
def data_dir_context(path: Path | str | None):
    """Temporarily override the data directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _DATA_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _DATA_DIR_OVERRIDE.reset(token)


def set_data_dir(path: Path | str | None) -> None:
    global DATA_DIR
    if path is None:
        DATA_DIR = DEFAULT_DATA_DIR
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    DATA_DIR = dir_path


def default_db_path() -> Path:
    """Return the absolute path to the shared SQLite database."""

    directory = _resolve_data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / DB_FILENAME


def _connect(db_path: Path, *, query_only: bool = False) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    if query_only:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS store_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS corpus (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            root_path TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS note (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            corpus_id INTEGER NOT NULL REFERENCES corpus(id) ON DELETE CASCADE,
            path TEXT NOT NULL,
            mtime REAL NOT NULL,
            size_bytes INTEGER NOT NULL,
            indexed_at TEXT NOT NULL,
            UNIQUE(corpus_id, path)
        );

        CREATE TABLE IF NOT EXISTS chunk (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            note_id INTEGER NOT NULL REFERENCES note(id) ON DELETE CASCADE,
            corpus_id INTEGER NOT NULL,
            chunk_index INTEGER NOT NULL,
            char_offset INTEGER NOT NULL DEFAULT 0,
            text TEXT NOT NULL,
            vector_blob BLOB NOT NULL,
            UNIQUE(note_id, chunk_index)
        );

        CREATE TABLE IF NOT EXISTS query_session (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            corpora TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_note_lookup
            ON note(corpus_id, path);

        CREATE INDEX IF NOT EXISTS idx_chunk_corpus
            ON chunk(corpus_id, note_id, chunk_index);
        """
    )
    conn.execute(
        "INSERT OR IGNORE INTO store_meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    conn.commit()


class Database:
    """Owns the database location and hands out short-lived connections."""

    def __init__(self, path: Path | str | None = None) -> None:
        if path is None:
            self.path = default_db_path()
        else:
            self.path = Path(path).expanduser().resolve()
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = _connect(self.path)
        try:
            _ensure_schema(conn)
        finally:
            conn.close()
        logger.debug("Opened store at %s", self.path)

    @contextmanager
    def connection(self, *, query_only: bool = False) -> Iterator[sqlite3.Connection]:
        conn = _connect(self.path, query_only=query_only)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a ``BEGIN IMMEDIATE`` write transaction."""
        with self.connection() as conn:
            with conn:
                conn.execute("BEGIN IMMEDIATE;")
                yield conn


def _require_corpus(conn: sqlite3.Connection, corpus_id: int) -> None:
    row = conn.execute("SELECT id FROM corpus WHERE id = ?", (corpus_id,)).fetchone()
    if row is None:
        raise NotFoundError(
            Messages.ERROR_CORPUS_NOT_FOUND.format(ref=corpus_id),
            code="corpus.not_found",
        )


def _unique_ids(corpus_ids: Iterable[int]) -> list[int]:
    return sorted({int(value) for value in corpus_ids})


class ChunkStore:
    """Durable mapping from ``(corpus, path, chunk index)`` to text and vector."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def upsert_chunks(
        self,
        corpus_id: int,
        path: str,
        fingerprint: Fingerprint,
        chunks: Sequence[ChunkRecord],
    ) -> int:
        """Replace every chunk of *path* in one transaction; return the count written."""

        now = utcnow()
        with self.database.transaction() as conn:
            _require_corpus(conn, corpus_id)
            conn.execute(
                "DELETE FROM note WHERE corpus_id = ? AND path = ?",
                (corpus_id, path),
            )
            cursor = conn.execute(
                """
                INSERT INTO note (corpus_id, path, mtime, size_bytes, indexed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (corpus_id, path, fingerprint.mtime, fingerprint.size, now),
            )
            note_id = cursor.lastrowid
            conn.executemany(
                """
                INSERT INTO chunk (
                    note_id,
                    corpus_id,
                    chunk_index,
                    char_offset,
                    text,
                    vector_blob
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        note_id,
                        corpus_id,
                        chunk.index,
                        chunk.offset,
                        chunk.text,
                        np.asarray(chunk.vector, dtype=np.float32).tobytes(),
                    )
                    for chunk in chunks
                ],
            )
            conn.execute(
                "UPDATE corpus SET updated_at = ? WHERE id = ?",
                (now, corpus_id),
            )
        return len(chunks)

    def remove_paths(self, corpus_id: int, paths: Sequence[str]) -> int:
        if not paths:
            return 0
        with self.database.transaction() as conn:
            _require_corpus(conn, corpus_id)
            removed = 0
            for batch in _chunk_values(list(paths), _IN_CLAUSE_LIMIT):
                placeholders = ", ".join("?" for _ in batch)
                cursor = conn.execute(
                    f"DELETE FROM note WHERE corpus_id = ? AND path IN ({placeholders})",
                    (corpus_id, *batch),
                )
                removed += cursor.rowcount
            if removed:
                conn.execute(
                    "UPDATE corpus SET updated_at = ? WHERE id = ?",
                    (utcnow(), corpus_id),
                )
        if removed:
            self.reset_dimension()
        return removed

    def fingerprints_for(self, corpus_id: int) -> dict[str, Fingerprint]:
        with self.database.connection(query_only=True) as conn:
            rows = conn.execute(
                "SELECT path, mtime, size_bytes FROM note WHERE corpus_id = ?",
                (corpus_id,),
            ).fetchall()
        return {
            row["path"]: Fingerprint(mtime=float(row["mtime"]), size=int(row["size_bytes"]))
            for row in rows
        }

    def chunks_for(self, corpus_ids: Iterable[int]) -> list[Chunk]:
        """Return every chunk owned by *corpus_ids*, ordered by corpus, path, index."""

        ids = _unique_ids(corpus_ids)
        if not ids:
            return []
        chunks: list[Chunk] = []
        with self.database.connection(query_only=True) as conn:
            for batch in _chunk_values(ids, _IN_CLAUSE_LIMIT):
                placeholders = ", ".join("?" for _ in batch)
                rows = conn.execute(
                    f"""
                    SELECT n.corpus_id, n.path, n.mtime, n.size_bytes,
                           c.chunk_index, c.char_offset, c.text, c.vector_blob
                    FROM chunk AS c
                    JOIN note AS n ON n.id = c.note_id
                    WHERE n.corpus_id IN ({placeholders})
                    ORDER BY n.corpus_id ASC, n.path ASC, c.chunk_index ASC
                    """,
                    tuple(batch),
                ).fetchall()
                for row in rows:
                    chunks.append(
                        Chunk(
                            corpus_id=int(row["corpus_id"]),
                            path=row["path"],
                            index=int(row["chunk_index"]),
                            offset=int(row["char_offset"]),
                            text=row["text"],
                            vector=np.frombuffer(row["vector_blob"], dtype=np.float32),
                            fingerprint=Fingerprint(
                                mtime=float(row["mtime"]),
                                size=int(row["size_bytes"]),
                            ),
                        )
                    )
        return chunks

    def vectors_for(
        self, corpus_ids: Iterable[int]
    ) -> tuple[list[ChunkRef], np.ndarray]:
        """Return chunk refs and a float32 ``(n, dimension)`` matrix in matching order."""

        chunks = self.chunks_for(corpus_ids)
        refs = [
            ChunkRef(
                corpus_id=chunk.corpus_id,
                path=chunk.path,
                index=chunk.index,
                offset=chunk.offset,
                text=chunk.text,
            )
            for chunk in chunks
        ]
        if not chunks:
            return refs, np.empty((0, 0), dtype=np.float32)
        matrix = np.vstack([chunk.vector for chunk in chunks]).astype(np.float32, copy=False)
        return refs, matrix

    def paths_for(self, corpus_ids: Iterable[int]) -> dict[int, list[str]]:
        ids = _unique_ids(corpus_ids)
        paths: dict[int, list[str]] = {}
        if not ids:
            return paths
        with self.database.connection(query_only=True) as conn:
            for batch in _chunk_values(ids, _IN_CLAUSE_LIMIT):
                placeholders = ", ".join("?" for _ in batch)
                rows = conn.execute(
                    f"""
                    SELECT corpus_id, path FROM note
                    WHERE corpus_id IN ({placeholders})
                    ORDER BY corpus_id ASC, path ASC
                    """,
                    tuple(batch),
                ).fetchall()
                for row in rows:
                    paths.setdefault(int(row["corpus_id"]), []).append(row["path"])
        return paths

    def has_note(self, corpus_id: int, path: str) -> bool:
        with self.database.connection(query_only=True) as conn:
            row = conn.execute(
                "SELECT 1 FROM note WHERE corpus_id = ? AND path = ?",
                (corpus_id, path),
            ).fetchone()
        return row is not None

    def dimension(self) -> int | None:
        with self.database.connection(query_only=True) as conn:
            row = conn.execute(
                "SELECT value FROM store_meta WHERE key = 'dimension'"
            ).fetchone()
        return int(row["value"]) if row is not None else None

    def claim_dimension(self, dimension: int) -> int:
        """Record *dimension* unless one is already stored; return the stored value."""

        with self.database.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO store_meta (key, value) VALUES ('dimension', ?)",
                (str(int(dimension)),),
            )
            row = conn.execute(
                "SELECT value FROM store_meta WHERE key = 'dimension'"
            ).fetchone()
        return int(row["value"])

    def reset_dimension(self) -> bool:
        """Forget the stored dimension once no chunk remains to enforce it against."""

        with self.database.transaction() as conn:
            remaining = conn.execute("SELECT COUNT(*) AS total FROM chunk").fetchone()
            if int(remaining["total"] or 0):
                return False
            conn.execute("DELETE FROM store_meta WHERE key = 'dimension'")
        return True
