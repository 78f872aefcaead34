"""
Unit tests for CLI commands.
"""
import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from anamnesis.cli import app
from anamnesis.index import MemoryIndexManager
from tests.fakes import HashingEmbeddingProvider

runner = CliRunner()


def _test_manager(settings):
    return MemoryIndexManager(settings=settings, provider=HashingEmbeddingProvider(), watch=False)


@pytest.fixture(autouse=True)
def fake_embeddings():
    with patch("anamnesis.cli._build_manager", side_effect=_test_manager) as mock_build:
        yield mock_build


@pytest.fixture()
def root(memory_root):
    (memory_root / "MEMORY.md").write_text("one\ntwo\nthree\nUser prefers oolong tea.", encoding="utf-8")
    return memory_root


def _invoke(root, *args):
    return runner.invoke(app, ["--root", str(root), *args])


class TestVersionCommand:
    """Tests for version command."""

    def test_version_displays_version(self):
        """Test version command displays version."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Anamnesis" in result.stdout
        assert "0.1.0" in result.stdout


class TestGlobalOptions:
    """Tests for options on the root command."""

    def test_invalid_log_level(self):
        """An unknown log level aborts with exit code 1."""
        result = runner.invoke(app, ["--log-level", "chatty", "version"])
        assert result.exit_code == 1

    def test_root_option_reaches_settings(self, root, fake_embeddings):
        """--root sets the memory root used to build the manager."""
        _invoke(root, "status")

        settings = fake_embeddings.call_args.args[0]
        assert settings.resolved_memory_root() == root.resolve()


class TestSyncCommand:
    """Tests for sync command."""

    def test_sync_reports_counts(self, root):
        """Test sync indexes the memory files."""
        result = _invoke(root, "sync")

        assert result.exit_code == 0
        assert "Synced 1 file(s)" in result.stdout
        assert (root / ".anamnesis" / "index.db").exists()

    def test_sync_force(self, root):
        """Test forced sync re-indexes unchanged files."""
        _invoke(root, "sync")
        result = _invoke(root, "sync", "--force")

        assert result.exit_code == 0
        assert "1 indexed" in result.stdout


class TestSearchCommand:
    """Tests for search command."""

    def test_search_json(self, root):
        """Test --json prints camelCase result objects."""
        result = _invoke(root, "search", "oolong tea", "--json")

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload[0]["path"] == "MEMORY.md"
        assert payload[0]["startLine"] == 1
        assert payload[0]["citation"] == "MEMORY.md#L1-L4"

    def test_search_table(self, root):
        """Test results are rendered as a table."""
        result = _invoke(root, "search", "oolong tea")

        assert result.exit_code == 0
        assert "MEMORY.md" in result.stdout

    def test_search_no_results(self, root):
        """Test a query with no match says so."""
        result = _invoke(root, "search", "volcano telescope")

        assert result.exit_code == 0
        assert "No relevant memories found" in result.stdout


class TestGetCommand:
    """Tests for get command."""

    def test_get_range(self, root):
        """Test reading a line range."""
        result = _invoke(root, "get", "MEMORY.md", "--from", "2", "--lines", "2")

        assert result.exit_code == 0
        assert result.stdout == "two\nthree\n"

    def test_get_traversal_fails(self, root):
        """Test escaping paths exit with an error."""
        result = _invoke(root, "get", "../../etc/passwd")

        assert result.exit_code == 1
        assert "Path traversal" in result.stdout


class TestStatusCommand:
    """Tests for status command."""

    def test_status_table(self, root):
        """Test status shows counts and the embedding model."""
        _invoke(root, "sync")
        result = _invoke(root, "status")

        assert result.exit_code == 0
        assert "Memory Index" in result.stdout
        assert "hashing-test" in result.stdout


class TestRememberCommand:
    """Tests for remember command."""

    def test_remember_long_term(self, root):
        """Test text is appended to MEMORY.md."""
        result = _invoke(root, "remember", "Standup moved to 9:30.")

        assert result.exit_code == 0
        assert "Appended to MEMORY.md" in result.stdout
        assert (root / "MEMORY.md").read_text(encoding="utf-8").endswith("\nStandup moved to 9:30.\n")

    def test_remember_daily(self, root):
        """Test --daily writes to today's log."""
        result = _invoke(root, "remember", "--daily", "Paired on the parser.")

        assert result.exit_code == 0
        daily = [p for p in root.glob("*.md") if p.name != "MEMORY.md"]
        assert len(daily) == 1
        assert "Paired on the parser." in daily[0].read_text(encoding="utf-8")


class TestMigrateCommand:
    """Tests for migrate command."""

    def test_migrate_from_path(self, root, tmp_path):
        """Test a v1 store is folded into MEMORY.md."""
        legacy = tmp_path / "memories.json"
        legacy.write_text(json.dumps({"memories": [{"content": "Prefers dark mode"}]}), encoding="utf-8")

        result = _invoke(root, "migrate", str(legacy))

        assert result.exit_code == 0
        assert "Migrated 1 memories" in result.stdout
        assert "- Prefers dark mode" in (root / "MEMORY.md").read_text(encoding="utf-8")

    def test_migrate_without_path(self, root, monkeypatch):
        """Test migrate needs a path from the argument or settings."""
        monkeypatch.delenv("ANAMNESIS_LEGACY_MEMORIES_PATH", raising=False)

        result = _invoke(root, "migrate")

        assert result.exit_code == 1


class TestCachePruneCommand:
    """Tests for cache prune command."""

    def test_prune_without_limits(self, root):
        """Test prune with no limits does nothing."""
        result = _invoke(root, "cache", "prune")

        assert result.exit_code == 0
        assert "Nothing to do" in result.stdout

    def test_prune_max_entries(self, root):
        """Test prune trims the cache to the given size."""
        _invoke(root, "sync")

        result = _invoke(root, "cache", "prune", "--max-entries", "0")

        assert result.exit_code == 0
        assert "Removed 1 cache entries" in result.stdout
