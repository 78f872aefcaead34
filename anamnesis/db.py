"""SQLite database layer for the memory index: files, chunks, vector scan, and FTS5."""

from __future__ import annotations

import math
import sqlite3
import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec
import structlog

from .errors import IndexUnavailableError
from .models import ChunkRecord, KeywordHit, MemoryFileEntry, VectorHit

logger = structlog.get_logger(__name__)


def _load_extensions(conn: sqlite3.Connection) -> None:
    """Load sqlite-vec extension."""
    conn.enable_load_extension(True)
    sqlite_vec.load(conn)
    conn.enable_load_extension(False)


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack a vector as little-endian float32, the layout sqlite-vec reads."""
    return sqlite_vec.serialize_float32(embedding)


def deserialize_embedding(blob: bytes) -> list[float]:
    """Unpack a float32 blob written by serialize_embedding."""
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    mtime INTEGER NOT NULL,
    size INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    hash TEXT NOT NULL,
    model TEXT NOT NULL,
    text TEXT NOT NULL,
    embedding BLOB NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path);

CREATE TABLE IF NOT EXISTS embedding_cache (
    hash TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    dims INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_embedding_cache_updated ON embedding_cache(updated_at);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    text,
    id UNINDEXED,
    path UNINDEXED,
    model UNINDEXED,
    start_line UNINDEXED,
    end_line UNINDEXED
);
"""


class MemoryDB:
    """SQLite database for memory file records, chunk storage, and search.

    All statements run under one re-entrant lock, so the database can be
    shared between the sync pass, searches, and the embedding cache.

    Args:
        db_path: Path to the SQLite database file.
        enable_fts: Create and use the FTS5 keyword index when the SQLite
            build supports it.
    """

    def __init__(self, db_path: Path, enable_fts: bool = True) -> None:
        self._db_path = db_path
        self._enable_fts = enable_fts
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.fts_available = False
        self._conn = self._connect()
        logger.info(f"database_opened path={db_path} fts={self.fts_available}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        _load_extensions(conn)
        conn.executescript(_SCHEMA)
        self.fts_available = False
        if self._enable_fts:
            try:
                conn.executescript(_FTS_SCHEMA)
                self.fts_available = True
            except sqlite3.Error as exc:
                logger.warning(f"fts_unavailable error={exc}")
        conn.commit()
        return conn

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run statements atomically under the database lock."""
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # File records
    # ------------------------------------------------------------------

    def get_file_hash(self, path: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT hash FROM files WHERE path = ?", (path,)).fetchone()
        return row["hash"] if row else None

    def list_file_paths(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT path FROM files ORDER BY path").fetchall()
        return [row["path"] for row in rows]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def get_chunk_models(self, path: str) -> set[tuple[str, int]]:
        """Return the distinct (model, dimensions) pairs of a file's stored chunks."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT model, vec_length(embedding) AS dims FROM chunks WHERE path = ?",
                (path,),
            ).fetchall()
        return {(row["model"], row["dims"]) for row in rows}

    def replace_file(self, entry: MemoryFileEntry, chunks: list[ChunkRecord]) -> None:
        """Delete every stored chunk for the file, insert the new set, and upsert its record."""
        logger.debug(f"replace_file_start path={entry.path} num_chunks={len(chunks)}")
        with self.transaction() as cur:
            self._delete_chunks(cur, entry.path)
            for chunk in chunks:
                cur.execute(
                    "INSERT INTO chunks"
                    " (id, path, start_line, end_line, hash, model, text, embedding, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        chunk.id,
                        chunk.path,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.hash,
                        chunk.model,
                        chunk.text,
                        serialize_embedding(chunk.embedding),
                        chunk.updated_at,
                    ),
                )
                if self.fts_available:
                    cur.execute(
                        "INSERT INTO chunks_fts (text, id, path, model, start_line, end_line)"
                        " VALUES (?, ?, ?, ?, ?, ?)",
                        (chunk.text, chunk.id, chunk.path, chunk.model, chunk.start_line, chunk.end_line),
                    )
            cur.execute(
                "INSERT OR REPLACE INTO files (path, hash, mtime, size) VALUES (?, ?, ?, ?)",
                (entry.path, entry.hash, entry.mtime_ms, entry.size),
            )
        logger.info(f"file_indexed path={entry.path} chunks_inserted={len(chunks)}")

    def remove_file(self, path: str) -> None:
        """Delete a file record and all of its chunks."""
        with self.transaction() as cur:
            removed = self._delete_chunks(cur, path)
            cur.execute("DELETE FROM files WHERE path = ?", (path,))
        logger.info(f"file_removed path={path} chunks_removed={removed}")

    def _delete_chunks(self, cur: sqlite3.Cursor, path: str) -> int:
        if self.fts_available:
            cur.execute("DELETE FROM chunks_fts WHERE id IN (SELECT id FROM chunks WHERE path = ?)", (path,))
        cur.execute("DELETE FROM chunks WHERE path = ?", (path,))
        return cur.rowcount

    def get_chunks(self, path: str) -> list[ChunkRecord]:
        """Return the stored chunks of one file ordered by position."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, path, start_line, end_line, hash, model, text, embedding, updated_at"
                " FROM chunks WHERE path = ? ORDER BY start_line, end_line",
                (path,),
            ).fetchall()
        return [
            ChunkRecord(
                id=row["id"],
                path=row["path"],
                start_line=row["start_line"],
                end_line=row["end_line"],
                hash=row["hash"],
                model=row["model"],
                text=row["text"],
                embedding=deserialize_embedding(row["embedding"]),
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def vector_search(self, embedding: list[float], limit: int = 20) -> list[VectorHit]:
        """Brute-force cosine scan over chunks with the query's dimensionality.

        Similarity is ``1 - cosine distance`` clamped to [0, 1]; chunks whose
        distance is undefined (zero vectors) score 0.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, path, start_line, end_line, text,
                       vec_distance_cosine(embedding, ?) AS distance
                FROM chunks
                WHERE vec_length(embedding) = ?
                ORDER BY distance IS NULL, distance
                LIMIT ?
                """,
                (serialize_embedding(embedding), len(embedding), limit),
            ).fetchall()
        hits: list[VectorHit] = []
        for row in rows:
            distance = row["distance"]
            if distance is None or not math.isfinite(distance):
                similarity = 0.0
            else:
                similarity = min(1.0, max(0.0, 1.0 - float(distance)))
            hits.append(
                VectorHit(
                    id=row["id"],
                    path=row["path"],
                    start_line=row["start_line"],
                    end_line=row["end_line"],
                    snippet=row["text"],
                    vector_score=similarity,
                )
            )
        return hits

    def fts_search(self, query: str, limit: int = 20) -> list[tuple[KeywordHit, float]]:
        """Return (hit, rank) pairs, best first.

        Rank is the FTS5 bm25 rank (lower = better match). The hit's
        ``text_score`` is left at 0 for the caller to fill in.

        Raises:
            IndexUnavailableError: FTS5 is missing or the query fails.
        """
        if not self.fts_available:
            raise IndexUnavailableError("full-text index is not available")
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT id, path, start_line, end_line, text, rank
                    FROM chunks_fts
                    WHERE chunks_fts MATCH ?
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (query, limit),
                ).fetchall()
        except sqlite3.Error as exc:
            raise IndexUnavailableError(f"full-text query failed: {exc}") from exc
        return [
            (
                KeywordHit(
                    id=row["id"],
                    path=row["path"],
                    start_line=int(row["start_line"]),
                    end_line=int(row["end_line"]),
                    snippet=row["text"],
                    text_score=0.0,
                ),
                float(row["rank"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Meta and counts
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as cur:
            cur.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value))

    def counts(self) -> dict[str, int]:
        """Return row counts for files, chunks and cached embeddings."""
        with self._lock:
            files = self._conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
            chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            cached = self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
        return {"files": files, "chunks": chunks, "cached_embeddings": cached}
