"""
Configuration management for Anamnesis.

Implements multi-level configuration loading with precedence:
1. Environment variables (highest priority)
2. Project config (./.anamnesis/config.yaml)
3. User config (~/.anamnesis/config.yaml)
4. System config (/etc/anamnesis/config.yaml)
"""

import os
from pathlib import Path
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

PRIMARY_MEMORY_FILE = "MEMORY.md"
MEMORY_FILE_EXTENSION = ".md"


class MemorySettings(BaseSettings):
    """Configuration schema for the memory index with flat structure."""

    model_config = SettingsConfigDict(
        # Load from .env files in order of precedence (lowest to highest)
        env_file=[
            ".env",
            str(Path.home() / ".anamnesis" / ".env"),
        ],
        # Load from YAML files in order of precedence (lowest to highest)
        yaml_file=[
            "/etc/anamnesis/config.yaml",
            str(Path.home() / ".anamnesis" / "config.yaml"),
            str(Path.cwd() / ".anamnesis" / "config.yaml"),
        ],
        env_prefix="ANAMNESIS_",
        case_sensitive=False,
        # Ignore extra fields (like OPENAI_API_KEY that aren't part of config schema)
        extra="ignore",
        env_file_encoding="utf-8",
    )

    # =================================================================
    # Storage
    # =================================================================
    memory_root: str = Field(
        default=str(Path.home() / ".anamnesis" / "memory"),
        description="Directory holding MEMORY.md and the dated log files",
    )
    index_path: Optional[str] = Field(
        default=None,
        description="SQLite index file (defaults to <memory_root>/.anamnesis/index.db)",
    )

    # =================================================================
    # Chunking
    # =================================================================
    chunk_tokens: int = Field(default=400, ge=1, description="Approximate chunk size in tokens")
    chunk_overlap: int = Field(default=80, ge=0, description="Approximate chunk overlap in tokens")

    # =================================================================
    # Search
    # =================================================================
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0, description="Weight of the vector score")
    text_weight: float = Field(default=0.3, ge=0.0, le=1.0, description="Weight of the keyword score")
    candidate_multiplier: int = Field(
        default=4, ge=1, description="Candidates fetched per path, as a multiple of max_results"
    )
    max_snippet_chars: int = Field(default=700, ge=1, description="Snippet length cap in characters")
    default_max_results: int = Field(default=10, ge=1, description="Default number of search results")
    default_min_score: float = Field(default=0.3, ge=0.0, le=1.0, description="Default fused score threshold")
    read_default_lines: int = Field(default=50, ge=1, description="Default slice length for reads")

    # =================================================================
    # File watching
    # =================================================================
    watch_enabled: bool = Field(default=True, description="Watch the memory root for changes")
    watch_poll_interval: float = Field(default=1.0, gt=0, description="Polling interval in seconds")
    watch_stability_threshold: float = Field(
        default=1.0, ge=0, description="Seconds a file must stay unchanged before a change is reported"
    )

    # =================================================================
    # Embedding providers (in fallback order)
    # =================================================================
    local_model_name: str = Field(
        default="google/embeddinggemma-300m", description="sentence-transformers model for local inference"
    )
    local_model_dimensions: int = Field(default=256, ge=1, description="Truncated output size of the local model")
    models_cache_dir: Optional[str] = Field(default=None, description="Directory for downloaded model files")

    openai_model: str = Field(default="text-embedding-3-small", description="Remote embedding model")
    openai_dimensions: int = Field(default=1536, ge=1, description="Remote embedding dimensionality")
    openai_api_key_env: str = Field(
        default="OPENAI_API_KEY", description="Environment variable holding the remote API key"
    )
    openai_base_url: Optional[str] = Field(default=None, description="Base URL for an OpenAI-compatible API")

    fallback_model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2", description="fastembed model used as last resort"
    )
    fallback_model_dimensions: int = Field(default=384, ge=1, description="Last-resort model dimensionality")

    # =================================================================
    # Legacy migration
    # =================================================================
    legacy_memories_path: Optional[str] = Field(
        default=None, description="Path to a v1 memories.json to migrate into MEMORY.md"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include YAML support."""
        yaml_settings = YamlConfigSettingsSource(settings_cls)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def resolved_memory_root(self) -> Path:
        """Return the memory root as an absolute path with ``~`` expanded."""
        return Path(self.memory_root).expanduser().resolve()

    def resolved_index_path(self) -> Path:
        """Return the index database path."""
        if self.index_path:
            return Path(self.index_path).expanduser()
        return self.resolved_memory_root() / ".anamnesis" / "index.db"

    def openai_api_key(self) -> Optional[str]:
        """Read the remote embedding API key from the environment, if set."""
        return os.environ.get(self.openai_api_key_env) or None


def load_settings(**overrides) -> MemorySettings:
    """
    Load configuration from all sources with proper precedence.

    Keyword arguments take precedence over every other source.

    Examples:
        >>> settings = load_settings()
        >>> settings.chunk_tokens
        400

        Environment variable override:
        # export ANAMNESIS_MEMORY_ROOT=~/notes/memory
    """
    return MemorySettings(**overrides)
