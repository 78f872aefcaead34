"""Pydantic models for the memory index."""

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    """A slice of a memory file produced by the chunker."""

    start_line: int
    end_line: int
    text: str
    hash: str


class MemoryFileEntry(BaseModel):
    """A memory file observed on disk during a sync pass."""

    path: str
    abs_path: str
    mtime_ms: int
    size: int
    hash: str


class ChunkRecord(BaseModel):
    """A chunk of a memory file as stored in the index."""

    id: str
    path: str
    start_line: int
    end_line: int
    hash: str
    model: str
    text: str
    embedding: list[float]
    updated_at: int


class VectorHit(BaseModel):
    """A candidate from the vector-similarity path."""

    id: str
    path: str
    start_line: int
    end_line: int
    snippet: str
    vector_score: float


class KeywordHit(BaseModel):
    """A candidate from the full-text path."""

    id: str
    path: str
    start_line: int
    end_line: int
    snippet: str
    text_score: float


class HybridHit(BaseModel):
    """A fused candidate, before thresholding and truncation."""

    id: str
    path: str
    start_line: int
    end_line: int
    snippet: str
    vector_score: float = 0.0
    text_score: float = 0.0
    score: float = 0.0


class SearchResult(BaseModel):
    """A single ranked search result with its citation."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    start_line: int = Field(alias="startLine")
    end_line: int = Field(alias="endLine")
    score: float
    snippet: str
    citation: str


class ReadResult(BaseModel):
    """Text read from a memory file."""

    path: str
    text: str


class SyncReport(BaseModel):
    """Summary of one sync pass."""

    files_seen: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_removed: int = 0
    files_skipped: int = 0
    chunks_embedded: int = 0
    chunks_cached: int = 0


class IndexStatus(BaseModel):
    """Counts and provider state for the index."""

    memory_root: str
    index_path: str
    files: int
    chunks: int
    cached_embeddings: int
    fts_available: bool
    dirty: bool
    provider_model: str
    provider_dimensions: int
