"""magic_kb.retrieval.vector_store

Exhaustive cosine-similarity search over stored chunk embeddings.

This module scores every embedded chunk of a project against a query
embedding. Scoring is vectorised with NumPy; chunks whose embedding
dimensionality differs from the query's are skipped rather than treated as
errors.

Classes
-------
ChunkVectorIndex
    Vector search over a :class:`~magic_kb.retrieval.document_store_factory.KVDocumentStore`.

Functions
---------
cosine_similarity
    Cosine similarity of two vectors, ``0.0`` when either has zero norm.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import numpy as np

from magic_kb.retrieval.document_store_factory import KVDocumentStore
from magic_kb.retrieval.types import ScoredChunk

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of ``a`` and ``b``.

    Raises
    ------
    ValueError
        If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError("Vectors must have the same length")

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class ChunkVectorIndex:
    """Cosine-similarity search over a project's embedded chunks.

    Parameters
    ----------
    store : KVDocumentStore
        Document store holding the chunks.
    """

    def __init__(self, store: KVDocumentStore):
        self.store = store

    def search(self, project_id: str, query_embedding: Sequence[float], k: int) -> List[ScoredChunk]:
        """Return the ``k`` chunks most similar to ``query_embedding``.

        Parameters
        ----------
        project_id : str
            Project to search.
        query_embedding : Sequence[float]
            Query vector.
        k : int
            Maximum number of results.

        Returns
        -------
        list[ScoredChunk]
            Hits sorted by descending similarity; ties keep storage order.

        Raises
        ------
        ValueError
            If ``project_id`` or ``query_embedding`` is empty, or ``k`` is not
            positive.
        """
        if not project_id:
            raise ValueError("Project ID is required")
        if not query_embedding:
            raise ValueError("Query vector is required and must not be empty")
        if k <= 0:
            raise ValueError("k must be a positive integer")

        query = np.asarray(query_embedding, dtype=np.float64)
        chunks = [
            c for c in self.store.list_chunks(project_id, has_embedding=True)
            if c.embedding and len(c.embedding) == len(query)
        ]
        if not chunks:
            return []

        matrix = np.asarray([c.embedding for c in chunks], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        order = sorted(range(len(chunks)), key=lambda i: -scores[i])[:k]
        return [
            ScoredChunk(
                chunk_id=chunks[i].chunk_id,
                score=float(scores[i]),
                text=chunks[i].text,
                heading_path=list(chunks[i].heading_path),
            )
            for i in order
        ]

    def embedding_stats(self, project_id: str) -> Dict[str, Any]:
        """Summarise embedding coverage for ``project_id``.

        Returns
        -------
        dict[str, Any]
            ``total_chunks``, ``chunks_with_embeddings``,
            ``embedding_dimensions`` (``None`` when nothing is embedded) and
            ``average_text_length``.
        """
        chunks = self.store.list_chunks(project_id)
        embedded = [c for c in chunks if c.has_embedding]
        average = round(sum(len(c.text) for c in chunks) / len(chunks)) if chunks else 0

        return {
            "total_chunks": len(chunks),
            "chunks_with_embeddings": len(embedded),
            "embedding_dimensions": len(embedded[0].embedding) if embedded else None,
            "average_text_length": average,
        }


__all__ = ["ChunkVectorIndex", "cosine_similarity"]
