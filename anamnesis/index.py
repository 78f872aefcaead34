"""Memory index manager: keeps the SQLite index in step with the memory files."""

from __future__ import annotations

import os
import posixpath
import threading
import time
import uuid
from concurrent.futures import Future
from pathlib import Path

import structlog

from .cache import EmbeddingCache
from .chunking import chunk_markdown, hash_text
from .config import MEMORY_FILE_EXTENSION, PRIMARY_MEMORY_FILE, MemorySettings
from .db import MemoryDB
from .embeddings import EmbeddingProvider, create_default_embedding_provider
from .errors import (
    EmbeddingExhaustedError,
    IndexUnavailableError,
    MemoryFileNotFoundError,
    PathTraversalError,
    UnsupportedFileError,
)
from .hybrid import bm25_rank_to_score, build_fts_query, format_citation, merge_hybrid_results
from .models import ChunkRecord, IndexStatus, KeywordHit, MemoryFileEntry, ReadResult, SearchResult, SyncReport
from .watcher import MemoryWatcher

logger = structlog.get_logger(__name__)


class MemoryIndexManager:
    """Syncs markdown memory files into SQLite and serves hybrid search.

    The manager starts dirty, so the first search indexes the memory root.
    The file watcher only marks the index dirty; indexing itself happens in
    ``sync()``, which the next ``search()`` runs when needed. Concurrent
    ``sync()`` calls share one in-flight pass.

    Args:
        settings: Memory settings. Defaults to ``MemorySettings()``.
        provider: Embedding provider. Defaults to the local → remote →
            fallback chain built from settings.
        db: Index database. Defaults to a MemoryDB at the configured path.
        watch: Start the file watcher. Defaults to ``settings.watch_enabled``.
    """

    def __init__(
        self,
        settings: MemorySettings | None = None,
        provider: EmbeddingProvider | None = None,
        db: MemoryDB | None = None,
        watch: bool | None = None,
    ) -> None:
        self._settings = settings or MemorySettings()
        self._root = self._settings.resolved_memory_root()
        self._root.mkdir(parents=True, exist_ok=True)

        self._provider = provider or create_default_embedding_provider(self._settings)
        self._db = db or MemoryDB(self._settings.resolved_index_path())
        self._cache = EmbeddingCache(self._db)

        self._dirty = threading.Event()
        self._dirty.set()
        self._sync_lock = threading.Lock()
        self._sync_future: Future[SyncReport] | None = None
        self._synced_model: tuple[str, int] | None = None

        self._watcher: MemoryWatcher | None = None
        if self._settings.watch_enabled if watch is None else watch:
            self.start_watcher()
        logger.info(
            f"memory_index_initialized root={self._root} model={self._provider.model} "
            f"fts={self._db.fts_available}"
        )

    @property
    def root(self) -> Path:
        return self._root

    @property
    def db(self) -> MemoryDB:
        return self._db

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def dirty(self) -> bool:
        return self._dirty.is_set()

    def mark_dirty(self) -> None:
        """Flag the index as stale; the next search syncs first."""
        self._dirty.set()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Search memory using hybrid vector + keyword scoring.

        If the provider has switched to another model since the last sync,
        the index is synced again so stored vectors match the query's size.

        Args:
            query: Free-text query.
            max_results: Maximum number of results (defaults from settings).
            min_score: Minimum fused score (defaults from settings).

        Returns:
            Results ordered by descending fused score.

        Raises:
            EmbeddingExhaustedError: No embedding tier works and keyword
                search is unavailable, or a required sync failed.
        """
        max_results = self._settings.default_max_results if max_results is None else max_results
        min_score = self._settings.default_min_score if min_score is None else min_score

        if self._dirty.is_set():
            self.sync()

        candidate_limit = max_results * self._settings.candidate_multiplier
        try:
            query_vec = self._provider.embed_query(query)
            if self._active_model() != self._synced_model:
                logger.info(f"search_model_changed model={self._provider.model} action=resync")
                self.sync()
                if len(query_vec) != self._provider.dimensions:
                    query_vec = self._provider.embed_query(query)
            vector_hits = self._db.vector_search(query_vec, candidate_limit)
        except EmbeddingExhaustedError:
            if not self._db.fts_available:
                raise
            logger.warning("search_vector_unavailable falling_back=keyword_only")
            vector_hits = []
        keyword_hits = self._search_keyword(query, candidate_limit)

        merged = merge_hybrid_results(
            vector_hits,
            keyword_hits,
            vector_weight=self._settings.vector_weight,
            text_weight=self._settings.text_weight,
        )
        results = [
            SearchResult(
                path=hit.path,
                start_line=hit.start_line,
                end_line=hit.end_line,
                score=min(1.0, max(0.0, hit.score)),
                snippet=hit.snippet[: self._settings.max_snippet_chars],
                citation=format_citation(hit.path, hit.start_line, hit.end_line),
            )
            for hit in merged
            if hit.score >= min_score
        ][:max_results]
        logger.info(
            f"search_done query={query[:80]} results={len(results)} "
            f"vec_hits={len(vector_hits)} fts_hits={len(keyword_hits)}"
        )
        return results

    def _search_keyword(self, query: str, limit: int) -> list[KeywordHit]:
        fts_query = build_fts_query(query)
        if fts_query is None:
            return []
        try:
            rows = self._db.fts_search(fts_query, limit)
        except IndexUnavailableError as exc:
            logger.warning(f"keyword_search_unavailable error={exc}")
            return []
        hits: list[KeywordHit] = []
        for hit, rank in rows:
            hit.text_score = bm25_rank_to_score(rank)
            hits.append(hit)
        return hits

    # ------------------------------------------------------------------
    # Raw read
    # ------------------------------------------------------------------

    def read_file(
        self,
        rel_path: str,
        from_line: int | None = None,
        lines: int | None = None,
    ) -> ReadResult:
        """Read a memory file, or a line range of it.

        Args:
            rel_path: Path relative to the memory root, e.g. ``"MEMORY.md"``.
            from_line: First line to return (1-indexed).
            lines: Number of lines to return (defaults from settings when a
                range is requested).

        Raises:
            PathTraversalError: The path leaves the memory root.
            UnsupportedFileError: The path is not a markdown file.
            MemoryFileNotFoundError: The file does not exist.
        """
        normalized = rel_path.replace("\\", "/").strip()
        collapsed = posixpath.normpath(normalized) if normalized else ""
        if (
            not collapsed
            or collapsed.startswith("/")
            or collapsed == ".."
            or collapsed.startswith("../")
            or os.path.isabs(rel_path)
            or "\x00" in rel_path
        ):
            raise PathTraversalError(f"Path traversal not allowed: {rel_path}")
        if not collapsed.endswith(MEMORY_FILE_EXTENSION):
            raise UnsupportedFileError(f"Only {MEMORY_FILE_EXTENSION} files can be read: {rel_path}")

        resolved = (self._root / collapsed).resolve()
        if not resolved.is_relative_to(self._root):
            raise PathTraversalError(f"Path traversal not allowed: {rel_path}")
        if not resolved.is_file():
            raise MemoryFileNotFoundError(f"File not found: {collapsed}")

        content = resolved.read_text(encoding="utf-8")
        if from_line is None and lines is None:
            return ReadResult(path=collapsed, text=content)

        start = max(0, (from_line or 1) - 1)
        count = self._settings.read_default_lines if lines is None else max(0, lines)
        selected = content.split("\n")[start : start + count]
        return ReadResult(path=collapsed, text="\n".join(selected))

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(self, force: bool = False) -> SyncReport:
        """Bring the index in line with the memory files.

        Only one pass runs at a time. A caller arriving while a pass is in
        flight waits for it and receives its result instead of starting
        another one.

        Args:
            force: Re-index every file even when its hash is unchanged.

        Raises:
            EmbeddingExhaustedError: No embedding tier could embed new chunks.
        """
        with self._sync_lock:
            future = self._sync_future
            owner = future is None
            if owner:
                future = Future()
                self._sync_future = future
        if not owner:
            logger.debug("sync_joined_in_flight")
            return future.result()

        # edits that land while this pass runs set the flag again
        self._dirty.clear()
        try:
            report = self._run_sync(force)
        except BaseException as exc:
            self._dirty.set()
            future.set_exception(exc)
            raise
        else:
            future.set_result(report)
            return report
        finally:
            with self._sync_lock:
                self._sync_future = None

    def _run_sync(self, force: bool) -> SyncReport:
        started = time.monotonic()
        report = SyncReport()
        files = self._list_memory_files()
        logger.info(f"sync_start files={len(files)} force={force}")

        entries: dict[str, tuple[MemoryFileEntry, str]] = {}
        for abs_path in files:
            rel_path = abs_path.relative_to(self._root).as_posix()
            try:
                stat = abs_path.stat()
                content = abs_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                # deleted between listing and reading, or not text
                logger.warning(f"sync_file_skipped path={rel_path} error={exc}")
                report.files_skipped += 1
                continue
            entries[rel_path] = (
                MemoryFileEntry(
                    path=rel_path,
                    abs_path=str(abs_path),
                    mtime_ms=int(stat.st_mtime * 1000),
                    size=stat.st_size,
                    hash=hash_text(content),
                ),
                content,
            )
        report.files_seen = len(entries)

        indexed: set[str] = set()
        check_current = not force
        while True:
            active = self._active_model()
            for entry, content in entries.values():
                if check_current and self._is_current(entry):
                    continue
                embedded, cached = self._index_file(entry, content)
                indexed.add(entry.path)
                report.chunks_embedded += embedded
                report.chunks_cached += cached
            if self._active_model() == active:
                break
            # files indexed before the provider switched tiers hold vectors of the old size
            logger.warning(f"sync_model_changed from={active[0]} to={self._provider.model} action=reindex_stale")
            check_current = True
        report.files_indexed = len(indexed)
        report.files_unchanged = report.files_seen - len(indexed)

        for path in self._db.list_file_paths():
            if path not in entries:
                self._db.remove_file(path)
                report.files_removed += 1

        self._synced_model = self._active_model()
        logger.info(
            f"sync_done seen={report.files_seen} indexed={report.files_indexed} "
            f"unchanged={report.files_unchanged} removed={report.files_removed} "
            f"skipped={report.files_skipped} elapsed={time.monotonic() - started:.2f}s"
        )
        return report

    def _active_model(self) -> tuple[str, int]:
        return self._provider.model, self._provider.dimensions

    def _is_current(self, entry: MemoryFileEntry) -> bool:
        """True when the stored file has the same hash and only vectors from the active model."""
        if self._db.get_file_hash(entry.path) != entry.hash:
            return False
        stored = self._db.get_chunk_models(entry.path)
        if not stored <= {self._active_model()}:
            logger.debug(f"sync_file_stale_model path={entry.path} stored={sorted(stored)}")
            return False
        return True

    def _index_file(self, entry: MemoryFileEntry, content: str) -> tuple[int, int]:
        """Chunk, embed, and store one file. Returns (embedded, cached) chunk counts."""
        logger.debug(f"indexing_file path={entry.path}")
        chunks = chunk_markdown(
            content,
            tokens=self._settings.chunk_tokens,
            overlap=self._settings.chunk_overlap,
        )
        embeddings, cached = self._cache.resolve(chunks, self._provider)

        model = self._provider.model
        now = int(time.time() * 1000)
        records = [
            ChunkRecord(
                id=uuid.uuid4().hex,
                path=entry.path,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
                hash=chunk.hash,
                model=model,
                text=chunk.text,
                embedding=embedding,
                updated_at=now,
            )
            for chunk, embedding in zip(chunks, embeddings, strict=True)
        ]
        self._db.replace_file(entry, records)
        return len(chunks) - cached, cached

    def _list_memory_files(self) -> list[Path]:
        """MEMORY.md first, then the other markdown files in the root by name."""
        result: list[Path] = []
        primary = self._root / PRIMARY_MEMORY_FILE
        if primary.is_file():
            result.append(primary)
        try:
            others = sorted(
                p
                for p in self._root.iterdir()
                if p.is_file() and p.suffix == MEMORY_FILE_EXTENSION and p.name != PRIMARY_MEMORY_FILE
            )
        except OSError as exc:
            logger.warning(f"list_memory_files_failed root={self._root} error={exc}")
            others = []
        result.extend(others)
        return result

    # ------------------------------------------------------------------
    # Watcher and lifecycle
    # ------------------------------------------------------------------

    def start_watcher(self) -> None:
        """Start the background file watcher."""
        if self._watcher is not None:
            return
        self._watcher = MemoryWatcher(
            self._root,
            self._on_file_event,
            poll_interval=self._settings.watch_poll_interval,
            stability_threshold=self._settings.watch_stability_threshold,
        )
        self._watcher.start()

    def stop_watcher(self) -> None:
        """Stop the background file watcher."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _on_file_event(self, kind: str, path: Path) -> None:
        logger.debug(f"memory_file_event kind={kind} path={path.name}")
        self._dirty.set()

    def status(self) -> IndexStatus:
        """Report index counts and the active embedding model."""
        counts = self._db.counts()
        return IndexStatus(
            memory_root=str(self._root),
            index_path=str(self._db.path),
            files=counts["files"],
            chunks=counts["chunks"],
            cached_embeddings=counts["cached_embeddings"],
            fts_available=self._db.fts_available,
            dirty=self.dirty,
            provider_model=self._provider.model,
            provider_dimensions=self._provider.dimensions,
        )

    def close(self) -> None:
        """Stop the watcher and close the database."""
        self.stop_watcher()
        self._db.close()
        logger.info(f"memory_index_closed root={self._root}")

    def __enter__(self) -> MemoryIndexManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
