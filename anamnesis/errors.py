"""Exception types raised by the memory index."""


class MemoryIndexError(Exception):
    """Base exception for memory index errors."""


class ProviderUnavailableError(MemoryIndexError):
    """Raised when a single embedding tier cannot serve a request."""


class EmbeddingExhaustedError(MemoryIndexError):
    """Raised when every tier in the embedding chain has failed."""


class IndexUnavailableError(MemoryIndexError):
    """Raised when the full-text index is missing or a full-text query fails."""


class MemoryAccessError(MemoryIndexError):
    """Base exception for rejected memory file reads."""


class PathTraversalError(MemoryAccessError):
    """Raised when a requested path resolves outside the memory root."""


class UnsupportedFileError(MemoryAccessError):
    """Raised when a requested file is not a markdown memory file."""


class MemoryFileNotFoundError(MemoryAccessError):
    """Raised when a requested memory file does not exist."""
