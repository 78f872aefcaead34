"""Unit tests for the v1 memories.json migration."""

import json

import pytest

from anamnesis.db import MemoryDB
from anamnesis.migrate import MIGRATION_KEY, migrate_legacy_memories


@pytest.fixture()
def db(tmp_path):
    database = MemoryDB(tmp_path / "migrate.db")
    yield database
    database.close()


def _legacy(tmp_path, memories):
    path = tmp_path / "memories.json"
    path.write_text(json.dumps({"memories": memories}), encoding="utf-8")
    return path


class TestMigrateLegacyMemories:
    """Tests for migrate_legacy_memories."""

    def test_writes_new_memory_file(self, tmp_path, memory_root, db):
        """Memories become bullets in a fresh MEMORY.md and the JSON is backed up."""
        legacy = _legacy(tmp_path, [{"content": "Likes tea"}, {"content": " Works remotely "}])

        migrated = migrate_legacy_memories(legacy, memory_root, db)

        assert migrated == 2
        assert (memory_root / "MEMORY.md").read_text(encoding="utf-8") == (
            "# Memory\n\n## Migrated from v1\n\n- Likes tea\n- Works remotely\n"
        )
        assert not legacy.exists()
        assert (tmp_path / "memories.json.bak").exists()
        assert db.get_meta(MIGRATION_KEY) == "true"

    def test_appends_to_existing_memory_file(self, tmp_path, memory_root, db):
        """Existing MEMORY.md content is kept."""
        (memory_root / "MEMORY.md").write_text("# Memory\n\nExisting fact.\n", encoding="utf-8")
        legacy = _legacy(tmp_path, [{"content": "Old fact"}])

        migrate_legacy_memories(legacy, memory_root, db)

        text = (memory_root / "MEMORY.md").read_text(encoding="utf-8")
        assert text.startswith("# Memory\n\nExisting fact.\n")
        assert text.endswith("## Migrated from v1\n\n- Old fact\n")

    def test_runs_only_once(self, tmp_path, memory_root, db):
        """Once the marker is set, later calls do nothing."""
        migrate_legacy_memories(_legacy(tmp_path, [{"content": "first"}]), memory_root, db)
        second = _legacy(tmp_path, [{"content": "second"}])

        assert migrate_legacy_memories(second, memory_root, db) == 0
        assert second.exists()
        assert "second" not in (memory_root / "MEMORY.md").read_text(encoding="utf-8")

    def test_missing_file_sets_marker(self, tmp_path, memory_root, db):
        """No legacy file means nothing to migrate, ever."""
        assert migrate_legacy_memories(tmp_path / "absent.json", memory_root, db) == 0
        assert db.get_meta(MIGRATION_KEY) == "true"
        assert not (memory_root / "MEMORY.md").exists()

    def test_empty_store_sets_marker(self, tmp_path, memory_root, db):
        """A store with no usable memories is treated as migrated."""
        legacy = _legacy(tmp_path, [{"content": "   "}, "not a dict"])

        assert migrate_legacy_memories(legacy, memory_root, db) == 0
        assert db.get_meta(MIGRATION_KEY) == "true"
        assert legacy.exists()

    def test_corrupt_file_leaves_marker_unset(self, tmp_path, memory_root, db):
        """Invalid JSON is logged and retried next time."""
        legacy = tmp_path / "memories.json"
        legacy.write_text("{not json", encoding="utf-8")

        assert migrate_legacy_memories(legacy, memory_root, db) == 0
        assert db.get_meta(MIGRATION_KEY) is None
        assert legacy.exists()
