"""
Anamnesis - long-term memory index for AI assistants.

Keeps a directory of markdown memory files (MEMORY.md plus dated logs)
synchronized into a SQLite index and answers hybrid vector + keyword
queries with line-level citations.
"""

__version__ = "0.1.0"
__author__ = "Anamnesis Contributors"

from .chunking import chunk_markdown, hash_text
from .embeddings import (
    EmbeddingProvider,
    EmbeddingProviderChain,
    create_default_embedding_provider,
)
from .errors import (
    EmbeddingExhaustedError,
    MemoryIndexError,
    PathTraversalError,
    UnsupportedFileError,
)
from .index import MemoryIndexManager
from .models import ReadResult, SearchResult, SyncReport

__all__ = [
    "MemoryIndexManager",
    "EmbeddingProvider",
    "EmbeddingProviderChain",
    "create_default_embedding_provider",
    "chunk_markdown",
    "hash_text",
    "ReadResult",
    "SearchResult",
    "SyncReport",
    "MemoryIndexError",
    "EmbeddingExhaustedError",
    "PathTraversalError",
    "UnsupportedFileError",
]
