"""One-time migration of v1 ``memories.json`` stores into MEMORY.md."""

from __future__ import annotations

import json
from pathlib import Path

import structlog

from .config import PRIMARY_MEMORY_FILE
from .db import MemoryDB

logger = structlog.get_logger(__name__)

MIGRATION_KEY = "memory_v2_migrated"


def migrate_legacy_memories(legacy_path: Path, memory_root: Path, db: MemoryDB) -> int:
    """Move memories from a v1 JSON store into MEMORY.md.

    The memories are appended to MEMORY.md as a bullet list, the JSON file is
    renamed to ``.bak``, and a marker is stored in the index so the migration
    never runs twice. A missing or empty legacy file also sets the marker.
    On failure the marker stays unset and the next run retries.

    Returns:
        Number of memories migrated.
    """
    if db.get_meta(MIGRATION_KEY) == "true":
        logger.debug("legacy_migration_already_done")
        return 0

    if not legacy_path.exists():
        logger.info(f"legacy_migration_nothing_to_do path={legacy_path}")
        db.set_meta(MIGRATION_KEY, "true")
        return 0

    try:
        store = json.loads(legacy_path.read_text(encoding="utf-8"))
        memories = [
            str(m["content"]).strip()
            for m in store.get("memories", [])
            if isinstance(m, dict) and str(m.get("content", "")).strip()
        ]
        if not memories:
            logger.info(f"legacy_migration_empty path={legacy_path}")
            db.set_meta(MIGRATION_KEY, "true")
            return 0

        memory_root.mkdir(parents=True, exist_ok=True)
        memory_file = memory_root / PRIMARY_MEMORY_FILE
        lines = ["## Migrated from v1", ""]
        lines.extend(f"- {content}" for content in memories)
        lines.append("")
        if memory_file.exists() and memory_file.read_text(encoding="utf-8").strip():
            with open(memory_file, "a", encoding="utf-8") as f:
                f.write("\n" + "\n".join(lines))
        else:
            memory_file.write_text("\n".join(["# Memory", "", *lines]), encoding="utf-8")

        legacy_path.rename(legacy_path.with_name(legacy_path.name + ".bak"))
    except (OSError, ValueError, AttributeError) as exc:
        logger.error(f"legacy_migration_failed path={legacy_path} error={exc}")
        return 0

    db.set_meta(MIGRATION_KEY, "true")
    logger.info(f"legacy_migration_done migrated={len(memories)} path={legacy_path}")
    return len(memories)
