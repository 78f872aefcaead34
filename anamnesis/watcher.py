"""Polling-based file watcher for memory files."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

import structlog

from .config import MEMORY_FILE_EXTENSION

logger = structlog.get_logger(__name__)

# (mtime_ns, size) of a watched file
_Stat = tuple[int, int]


class MemoryWatcher:
    """Watches a memory root for added, changed, and removed markdown files.

    Uses polling to detect changes. A change is only reported once the file
    has stayed unchanged for ``stability_threshold`` seconds, so a burst of
    writes to one file produces a single event.

    Args:
        root: Memory root directory.
        on_event: Callback invoked with ``("add" | "change" | "remove", path)``.
        poll_interval: Seconds between polls.
        stability_threshold: Seconds a file must be quiet before it is reported.
    """

    def __init__(
        self,
        root: Path,
        on_event: Callable[[str, Path], None],
        poll_interval: float = 1.0,
        stability_threshold: float = 1.0,
    ) -> None:
        self._root = root
        self._on_event = on_event
        self._poll_interval = poll_interval
        self._stability_threshold = stability_threshold
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stats: dict[Path, _Stat] = {}
        # path -> (event kind, monotonic time of the latest observed change)
        self._pending: dict[Path, tuple[str, float]] = {}

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Start the watcher in a daemon thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._stats = self._snapshot()
        self._pending = {}
        self._thread = threading.Thread(target=self._poll_loop, name="memory-watcher", daemon=True)
        self._thread.start()
        logger.info(f"watcher_started root={self._root}")

    def stop(self) -> None:
        """Stop the watcher thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
            logger.info(f"watcher_stopped root={self._root}")

    def _watched_files(self) -> list[Path]:
        if not self._root.is_dir():
            return []
        return sorted(
            p for p in self._root.iterdir() if p.suffix == MEMORY_FILE_EXTENSION and p.is_file()
        )

    def _snapshot(self) -> dict[Path, _Stat]:
        snapshot: dict[Path, _Stat] = {}
        for f in self._watched_files():
            try:
                st = f.stat()
            except OSError:
                continue
            snapshot[f] = (st.st_mtime_ns, st.st_size)
        return snapshot

    def poll_once(self, now: float | None = None) -> list[tuple[str, Path]]:
        """Run one polling step and return the events it emitted."""
        now = time.monotonic() if now is None else now
        current = self._snapshot()

        for path, stat in current.items():
            previous = self._stats.get(path)
            if previous is None:
                kind = self._pending.get(path, ("add", now))[0]
                self._pending[path] = ("change" if kind == "remove" else kind, now)
            elif previous != stat:
                kind = self._pending.get(path, ("change", now))[0]
                self._pending[path] = (kind, now)
        for path in self._stats.keys() - current.keys():
            self._pending[path] = ("remove", now)
        self._stats = current

        emitted: list[tuple[str, Path]] = []
        for path, (kind, changed_at) in list(self._pending.items()):
            if now - changed_at < self._stability_threshold:
                continue
            del self._pending[path]
            logger.debug(f"file_{kind} path={path}")
            self._on_event(kind, path)
            emitted.append((kind, path))
        return emitted

    def _poll_loop(self) -> None:
        """Main polling loop."""
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                logger.warning(f"poll_error root={self._root} error={exc}")
            self._stop_event.wait(self._poll_interval)
