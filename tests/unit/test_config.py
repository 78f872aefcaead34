"""
Unit tests for configuration management.

Covers defaults, environment and .env overrides, YAML files, and the
derived paths used by the index manager.
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError
from pydantic_settings import SettingsConfigDict

from anamnesis.config import MemorySettings, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ANAMNESIS_CHUNK_TOKENS", "ANAMNESIS_MEMORY_ROOT", "ANAMNESIS_INDEX_PATH", "ANAMNESIS_VECTOR_WEIGHT"):
        monkeypatch.delenv(name, raising=False)


class TestMemorySettings:
    """Test the settings schema."""

    def test_defaults(self):
        """Defaults match the documented search and chunking parameters."""
        settings = MemorySettings()

        assert settings.chunk_tokens == 400
        assert settings.chunk_overlap == 80
        assert settings.vector_weight == 0.7
        assert settings.text_weight == 0.3
        assert settings.candidate_multiplier == 4
        assert settings.max_snippet_chars == 700
        assert settings.default_max_results == 10
        assert settings.default_min_score == 0.3
        assert settings.read_default_lines == 50
        assert settings.local_model_dimensions == 256
        assert settings.fallback_model_dimensions == 384

    def test_env_override(self, monkeypatch):
        """ANAMNESIS_* environment variables override defaults."""
        monkeypatch.setenv("ANAMNESIS_CHUNK_TOKENS", "200")
        monkeypatch.setenv("ANAMNESIS_VECTOR_WEIGHT", "0.5")

        settings = MemorySettings()

        assert settings.chunk_tokens == 200
        assert settings.vector_weight == 0.5

    def test_dotenv_file(self, tmp_path, monkeypatch):
        """A .env file in the working directory is read, and the environment wins over it."""
        (tmp_path / ".env").write_text("ANAMNESIS_CHUNK_TOKENS=123\nANAMNESIS_CHUNK_OVERLAP=7\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ANAMNESIS_CHUNK_TOKENS", "321")

        settings = MemorySettings()

        assert settings.chunk_tokens == 321
        assert settings.chunk_overlap == 7

    def test_yaml_file(self, tmp_path):
        """Values are read from the configured YAML file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({"max_snippet_chars": 300, "watch_enabled": False}), encoding="utf-8")

        class YamlSettings(MemorySettings):
            model_config = SettingsConfigDict(yaml_file=str(config_file))

        settings = YamlSettings()

        assert settings.max_snippet_chars == 300
        assert settings.watch_enabled is False

    def test_invalid_weight_rejected(self):
        """Weights outside [0, 1] fail validation."""
        with pytest.raises(ValidationError):
            MemorySettings(vector_weight=1.5)

    def test_load_settings_overrides(self, monkeypatch):
        """Keyword overrides beat the environment."""
        monkeypatch.setenv("ANAMNESIS_CHUNK_TOKENS", "200")

        assert load_settings(chunk_tokens=50).chunk_tokens == 50


class TestDerivedPaths:
    """Test path helpers."""

    def test_memory_root_is_expanded(self):
        """~ is expanded and the root made absolute."""
        settings = MemorySettings(memory_root="~/notes/memory")

        assert settings.resolved_memory_root() == (Path.home() / "notes" / "memory").resolve()

    def test_default_index_path_lives_under_root(self, tmp_path):
        """Without index_path the database sits in <root>/.anamnesis/index.db."""
        settings = MemorySettings(memory_root=str(tmp_path))

        assert settings.resolved_index_path() == tmp_path.resolve() / ".anamnesis" / "index.db"

    def test_explicit_index_path(self, tmp_path):
        """An explicit index_path is used as-is."""
        settings = MemorySettings(index_path=str(tmp_path / "custom.db"))

        assert settings.resolved_index_path() == tmp_path / "custom.db"

    def test_api_key_from_named_env(self, monkeypatch):
        """The remote key is read from the configured variable."""
        monkeypatch.setenv("MY_EMBED_KEY", "sk-123")
        monkeypatch.setenv("OTHER_KEY", "")

        assert MemorySettings(openai_api_key_env="MY_EMBED_KEY").openai_api_key() == "sk-123"
        assert MemorySettings(openai_api_key_env="OTHER_KEY").openai_api_key() is None
