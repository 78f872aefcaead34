"""Line-oriented markdown chunking with character-based overlap."""

from __future__ import annotations

import hashlib

from .models import Chunk


def hash_text(value: str) -> str:
    """Return the SHA-256 hex digest of a string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def chunk_markdown(content: str, tokens: int = 400, overlap: int = 80) -> list[Chunk]:
    """Split markdown content into overlapping chunks for embedding.

    Token counts are approximated as characters / 4. Chunk boundaries fall on
    whole lines, except that a line longer than the chunk size is cut into
    fixed-size segments that all keep that line's number. After each flush the
    next chunk is seeded with trailing entries of the previous one until they
    add up to at least the overlap size.

    Args:
        content: Raw markdown text.
        tokens: Approximate chunk size in tokens.
        overlap: Approximate overlap between consecutive chunks in tokens.

    Returns:
        Chunks with 1-indexed inclusive line ranges and content hashes.
    """
    if not content:
        return []

    max_chars = max(32, tokens * 4)
    overlap_chars = max(0, overlap * 4)
    chunks: list[Chunk] = []

    # (segment, line number) entries of the chunk being built
    current: list[tuple[str, int]] = []
    current_chars = 0

    def flush() -> None:
        if not current:
            return
        text = "\n".join(segment for segment, _ in current)
        chunks.append(
            Chunk(
                start_line=current[0][1],
                end_line=current[-1][1],
                text=text,
                hash=hash_text(text),
            )
        )

    def carry_overlap() -> None:
        nonlocal current, current_chars
        if overlap_chars <= 0 or not current:
            current = []
            current_chars = 0
            return
        acc = 0
        kept: list[tuple[str, int]] = []
        for entry in reversed(current):
            acc += len(entry[0]) + 1
            kept.insert(0, entry)
            if acc >= overlap_chars:
                break
        current = kept
        current_chars = sum(len(segment) + 1 for segment, _ in kept)

    for index, line in enumerate(content.split("\n")):
        line_no = index + 1
        if not line:
            segments = [""]
        else:
            segments = [line[start : start + max_chars] for start in range(0, len(line), max_chars)]

        for segment in segments:
            size = len(segment) + 1
            if current_chars + size > max_chars and current:
                flush()
                carry_overlap()
            current.append((segment, line_no))
            current_chars += size

    flush()
    return chunks
