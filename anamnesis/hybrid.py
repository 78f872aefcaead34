"""Hybrid search scoring: keyword query building, rank conversion, and fusion."""

from __future__ import annotations

import math
import re

from .models import HybridHit, KeywordHit, VectorHit

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_fts_query(raw: str) -> str | None:
    """Build an FTS5 MATCH query requiring every word of ``raw``.

    Returns None when the text has no word characters.

    >>> build_fts_query('deploy "staging" cluster')
    '"deploy" AND "staging" AND "cluster"'
    """
    # word tokens never contain a double quote, so quoting needs no escaping
    tokens = _TOKEN_RE.findall(raw)
    if not tokens:
        return None
    return " AND ".join(f'"{t}"' for t in tokens)


def bm25_rank_to_score(rank: float) -> float:
    """Convert a bm25 rank (lower is better) to a score in (0, 1]."""
    normalized = max(0.0, rank) if math.isfinite(rank) else 999.0
    return 1.0 / (1.0 + normalized)


def merge_hybrid_results(
    vector: list[VectorHit],
    keyword: list[KeywordHit],
    vector_weight: float = 0.7,
    text_weight: float = 0.3,
) -> list[HybridHit]:
    """Merge both candidate lists by chunk id and rank by weighted score.

    A chunk found by only one path scores 0 on the other. When a chunk is
    found by both, the keyword snippet replaces the vector one.
    """
    by_id: dict[str, HybridHit] = {}

    for hit in vector:
        by_id[hit.id] = HybridHit(
            id=hit.id,
            path=hit.path,
            start_line=hit.start_line,
            end_line=hit.end_line,
            snippet=hit.snippet,
            vector_score=hit.vector_score,
        )

    for hit in keyword:
        existing = by_id.get(hit.id)
        if existing is not None:
            existing.text_score = hit.text_score
            if hit.snippet:
                existing.snippet = hit.snippet
        else:
            by_id[hit.id] = HybridHit(
                id=hit.id,
                path=hit.path,
                start_line=hit.start_line,
                end_line=hit.end_line,
                snippet=hit.snippet,
                text_score=hit.text_score,
            )

    merged = list(by_id.values())
    for entry in merged:
        entry.score = vector_weight * entry.vector_score + text_weight * entry.text_score
    merged.sort(key=lambda entry: entry.score, reverse=True)
    return merged


def format_citation(path: str, start_line: int, end_line: int) -> str:
    """Return a ``path#Lstart-Lend`` citation."""
    return f"{path}#L{start_line}-L{end_line}"
