"""Content-hash keyed embedding cache shared by every memory file."""

from __future__ import annotations

import time

import structlog

from .db import MemoryDB, deserialize_embedding, serialize_embedding
from .embeddings import EmbeddingProvider
from .models import Chunk

logger = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class EmbeddingCache:
    """Stores vectors by the hash of the text they were computed from.

    Entries outlive the files and chunks that produced them; they are only
    removed by ``prune``. A cached vector whose dimensionality differs from
    the one requested is treated as a miss.

    Args:
        db: The index database holding the ``embedding_cache`` table.
    """

    def __init__(self, db: MemoryDB) -> None:
        self._db = db

    def get_many(self, hashes: list[str], dims: int) -> dict[str, list[float]]:
        """Return cached vectors of the given dimensionality, keyed by hash."""
        if not hashes:
            return {}
        unique = list(dict.fromkeys(hashes))
        found: dict[str, list[float]] = {}
        with self._db.lock:
            # stay well below SQLite's bound-parameter limit
            for start in range(0, len(unique), 500):
                batch = unique[start : start + 500]
                placeholders = ",".join("?" for _ in batch)
                rows = self._db.connection.execute(
                    f"SELECT hash, embedding, dims FROM embedding_cache WHERE hash IN ({placeholders})",
                    batch,
                ).fetchall()
                for row in rows:
                    if row["dims"] != dims:
                        logger.debug(f"cache_dims_mismatch hash={row['hash'][:12]} cached={row['dims']} wanted={dims}")
                        continue
                    found[row["hash"]] = deserialize_embedding(row["embedding"])
        return found

    def put_many(self, entries: dict[str, list[float]]) -> None:
        """Insert or overwrite cache entries."""
        if not entries:
            return
        now = _now_ms()
        with self._db.transaction() as cur:
            cur.executemany(
                "INSERT OR REPLACE INTO embedding_cache (hash, embedding, dims, updated_at) VALUES (?, ?, ?, ?)",
                [(h, serialize_embedding(vec), len(vec), now) for h, vec in entries.items()],
            )

    def resolve(self, chunks: list[Chunk], provider: EmbeddingProvider) -> tuple[list[list[float]], int]:
        """Return one vector per chunk, embedding only cache misses.

        Identical texts among the misses are sent to the provider once.
        Newly computed vectors are written back to the cache. If the provider
        changes dimensionality while embedding (a fallback chain switching
        tiers), the lookup is repeated at the new size, so every returned
        vector has the provider's final dimensionality.

        Returns:
            The vectors in chunk order, and how many were served from cache.
        """
        computed: dict[str, list[float]] = {}
        while True:
            dims = provider.dimensions
            vectors = {h: vec for h, vec in computed.items() if len(vec) == dims}
            cached = self.get_many([c.hash for c in chunks if c.hash not in vectors], dims)
            vectors.update(cached)

            missing: dict[str, str] = {}
            for chunk in chunks:
                if chunk.hash not in vectors and chunk.hash not in missing:
                    missing[chunk.hash] = chunk.text
            if missing:
                logger.debug(f"embedding_batch count={len(missing)} cached={len(cached)}")
                embedded = provider.embed_batch(list(missing.values()))
                fresh = dict(zip(missing.keys(), embedded, strict=True))
                self.put_many(fresh)
                computed.update(fresh)
                vectors.update(fresh)

            if provider.dimensions == dims:
                break
            logger.warning(f"embedding_dims_changed from={dims} to={provider.dimensions} action=relookup")

        hits = sum(1 for c in chunks if c.hash in cached)
        return [vectors[c.hash] for c in chunks], hits

    def prune(self, max_age_seconds: float | None = None, max_entries: int | None = None) -> int:
        """Evict entries older than ``max_age_seconds`` and the oldest beyond ``max_entries``.

        Returns:
            Number of entries removed.
        """
        removed = 0
        with self._db.transaction() as cur:
            if max_age_seconds is not None:
                cutoff = _now_ms() - int(max_age_seconds * 1000)
                cur.execute("DELETE FROM embedding_cache WHERE updated_at < ?", (cutoff,))
                removed += cur.rowcount
            if max_entries is not None:
                cur.execute(
                    """
                    DELETE FROM embedding_cache WHERE hash IN (
                        SELECT hash FROM embedding_cache
                        ORDER BY updated_at DESC
                        LIMIT -1 OFFSET ?
                    )
                    """,
                    (max_entries,),
                )
                removed += cur.rowcount
        logger.info(f"cache_pruned removed={removed}")
        return removed
