"""Shared pytest fixtures for anamnesis tests."""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from anamnesis.config import MemorySettings
from anamnesis.index import MemoryIndexManager
from tests.fakes import HashingEmbeddingProvider


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo configure_logging so no logger keeps a captured stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def memory_root(tmp_path: Path) -> Path:
    root = tmp_path / "memory"
    root.mkdir()
    return root


@pytest.fixture()
def settings(tmp_path: Path, memory_root: Path) -> MemorySettings:
    return MemorySettings(
        memory_root=str(memory_root),
        index_path=str(tmp_path / "index" / "index.db"),
        watch_enabled=False,
    )


@pytest.fixture()
def provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture()
def manager(settings: MemorySettings, provider: HashingEmbeddingProvider):
    mgr = MemoryIndexManager(settings=settings, provider=provider, watch=False)
    yield mgr
    mgr.close()
