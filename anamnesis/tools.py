"""Agent-facing memory tools: search, read, and append."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from .config import PRIMARY_MEMORY_FILE
from .errors import MemoryAccessError, MemoryIndexError
from .index import MemoryIndexManager

logger = structlog.get_logger(__name__)


class MemoryTools:
    """Tool callables an agent loop can register, backed by one index manager.

    Search and read results are plain dicts ready for JSON serialization.
    Writes append to the markdown files and mark the index dirty, so the
    next search picks them up without waiting for the watcher.

    Args:
        manager: The memory index manager to serve.
        min_score: Score threshold for ``memory_search``. Defaults to the
            manager's configured minimum.
    """

    def __init__(self, manager: MemoryIndexManager, min_score: float | None = None) -> None:
        self._manager = manager
        self._min_score = min_score

    @property
    def memory_file(self) -> Path:
        return self._manager.root / PRIMARY_MEMORY_FILE

    def memory_search(self, query: str, max_results: int = 10) -> dict[str, Any]:
        """Search long-term memory (MEMORY.md and daily logs) semantically.

        Use this to recall prior decisions, preferences, facts, or context
        from previous interactions.

        Args:
            query: Search query text.
            max_results: Maximum number of results.

        Returns:
            ``{"results": [...]}`` with path, line range, score, snippet and
            citation for each hit, plus ``"error"`` when the search failed.
        """
        logger.info(f"memory_search query={query[:80]} max_results={max_results}")
        try:
            results = self._manager.search(query, max_results=max_results, min_score=self._min_score)
        except MemoryIndexError as exc:
            logger.warning(f"memory_search_failed query={query[:80]} error={exc}")
            return {"results": [], "error": str(exc)}
        if not results:
            return {"results": [], "message": "No relevant memories found."}
        return {"results": [r.model_dump(by_alias=True) for r in results]}

    def memory_get(self, path: str, from_line: int | None = None, lines: int | None = None) -> dict[str, Any]:
        """Read specific lines from a memory file.

        Use after memory_search to pull the full context around a snippet.
        Only reads .md files in the memory directory.

        Args:
            path: Relative path to the memory file (e.g., "MEMORY.md" or "2026-02-16.md").
            from_line: Starting line number (1-indexed).
            lines: Number of lines to read.

        Returns:
            ``{"path", "text"}``, plus ``"error"`` when the read was refused.
        """
        try:
            return self._manager.read_file(path, from_line=from_line, lines=lines).model_dump()
        except MemoryAccessError as exc:
            logger.warning(f"memory_get_refused path={path} error={exc}")
            return {"path": path, "text": "", "error": str(exc)}

    def long_term_memory_write(self, memory: str) -> str:
        """Append a memory to MEMORY.md.

        Args:
            memory: The text to append.

        Returns:
            Confirmation message.
        """
        with open(self.memory_file, "a", encoding="utf-8") as f:
            f.write(f"\n{memory}\n")
        self._manager.mark_dirty()
        logger.info(f"long_term_write file={self.memory_file}")
        return f"Appended to {self.memory_file.name}"

    def daily_memory_write(self, memory: str, heading: str = "Memory Flush") -> str:
        """Append a memory to today's daily log as a timestamped section.

        Args:
            memory: The text to append.
            heading: Section title written before the timestamp.

        Returns:
            Confirmation message.
        """
        now = datetime.now()
        date_str = now.strftime("%Y-%m-%d")
        daily_file = self._manager.root / f"{date_str}.md"
        if not daily_file.exists():
            daily_file.write_text(f"# {date_str}\n\n", encoding="utf-8")
        with open(daily_file, "a", encoding="utf-8") as f:
            f.write(f"\n## {heading} [{now.strftime('%H:%M')}]\n{memory.strip()}\n")
        self._manager.mark_dirty()
        logger.info(f"daily_write file={daily_file}")
        return f"Appended to {daily_file.name}"

    def get_tools(self) -> list[Callable[..., Any]]:
        """Get a list of available tool methods."""
        return [
            self.memory_search,
            self.memory_get,
            self.long_term_memory_write,
            self.daily_memory_write,
        ]
