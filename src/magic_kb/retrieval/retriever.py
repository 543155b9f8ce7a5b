"""magic_kb.retrieval.retriever

Hybrid merging of vector and lexical results.

Each result set is min-max normalised to ``[0, 1]`` independently (a set
whose scores are all equal normalises to ``1.0``). Normalised vector scores
are weighted by ``0.6`` and lexical scores by ``0.4``. A chunk found by both
indexes receives the sum of its weighted scores and ``source="both"``. The
combined list is sorted by descending score, keeping first-seen order on
ties (vector hits before lexical-only hits), and truncated to ``k``.

Functions
---------
normalize_scores
    Min-max normalise a list of scored chunks.
merge_results
    Combine vector and lexical hits into one ranked list.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from magic_kb.retrieval.types import HybridChunk, ScoredChunk

VECTOR_WEIGHT = 0.6
LEXICAL_WEIGHT = 0.4


def normalize_scores(results: Sequence[ScoredChunk]) -> List[ScoredChunk]:
    if not results:
        return []

    scores = [r.score for r in results]
    low, high = min(scores), max(scores)

    if high == low:
        return [r.with_score(1.0) for r in results]
    return [r.with_score((r.score - low) / (high - low)) for r in results]


def merge_results(
        vector_results: Sequence[ScoredChunk],
        lexical_results: Sequence[ScoredChunk],
        k: int,
        *,
        vector_weight: float = VECTOR_WEIGHT,
        lexical_weight: float = LEXICAL_WEIGHT,
    ) -> List[HybridChunk]:
    """Merge and deduplicate vector and lexical hits.

    Parameters
    ----------
    vector_results : Sequence[ScoredChunk]
        Hits from the vector index.
    lexical_results : Sequence[ScoredChunk]
        Hits from the lexical index.
    k : int
        Maximum number of merged hits.
    vector_weight, lexical_weight : float, optional
        Weights applied to the normalised scores. Default to ``0.6`` and
        ``0.4``.

    Returns
    -------
    list[HybridChunk]
        At most ``k`` hits, one per ``chunk_id``, highest score first.
    """
    merged: Dict[str, HybridChunk] = {}

    for hit in normalize_scores(vector_results):
        merged[hit.chunk_id] = HybridChunk(
            chunk_id=hit.chunk_id,
            score=hit.score * vector_weight,
            text=hit.text,
            heading_path=list(hit.heading_path),
            source="vector",
        )

    for hit in normalize_scores(lexical_results):
        existing = merged.get(hit.chunk_id)
        if existing is not None:
            merged[hit.chunk_id] = HybridChunk(
                chunk_id=existing.chunk_id,
                score=existing.score + hit.score * lexical_weight,
                text=existing.text,
                heading_path=existing.heading_path,
                source="both",
            )
        else:
            merged[hit.chunk_id] = HybridChunk(
                chunk_id=hit.chunk_id,
                score=hit.score * lexical_weight,
                text=hit.text,
                heading_path=list(hit.heading_path),
                source="lexical",
            )

    ranked = sorted(merged.values(), key=lambda c: -c.score)
    return ranked[:max(k, 0)]


__all__ = ["normalize_scores", "merge_results", "VECTOR_WEIGHT", "LEXICAL_WEIGHT"]
