"""magic_kb.pipelines.retrieval_pipeline

Hybrid retrieval orchestration.

This module defines the :class:`RetrievalPipeline`, which runs the vector and
lexical searches concurrently, merges their hits and renders a context pack.

Each search is bounded by the configured search timeout or the caller's
remaining budget, whichever is sooner. A failing or timed-out search
contributes no hits instead of failing the query; when both contribute
nothing the result is empty and :attr:`RetrievalResult.no_relevant_content`
is ``True``.

Classes
-------
RetrievalResult
    Merged hits plus the rendered context pack.
RetrievalPipeline
    Orchestrates (vector ∥ lexical) → merge → context pack.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from magic_kb.common.errors import ValidationError
from magic_kb.retrieval.context_pack import build_context_pack
from magic_kb.retrieval.embedder import EmbeddingClient
from magic_kb.retrieval.retriever import LEXICAL_WEIGHT, VECTOR_WEIGHT, merge_results
from magic_kb.retrieval.types import HybridChunk, LexicalSearcher, ScoredChunk, VectorSearcher

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Outcome of one retrieval.

    Attributes
    ----------
    chunks : list[HybridChunk]
        Merged hits, best first.
    context_pack : str
        Rendered context block (empty when there are no hits).
    """
    chunks: List[HybridChunk] = field(default_factory=list)
    context_pack: str = ""

    @property
    def no_relevant_content(self) -> bool:
        return not self.chunks

    def to_dict(self) -> dict:
        return {
            "chunks": [c.to_dict() for c in self.chunks],
            "context_pack": self.context_pack,
            "no_relevant_content": self.no_relevant_content,
        }


class RetrievalPipeline:
    """Hybrid retrieval over a project's chunks.

    Parameters
    ----------
    embedding_client : EmbeddingClient
        Client used to embed the query.
    vector_index : VectorSearcher
        Embedding-based index.
    lexical_index : LexicalSearcher
        Keyword index.
    candidate_multiplier : float, optional
        Each index is asked for ``max(k, ceil(k * candidate_multiplier))``
        candidates. Defaults to ``1.5``.
    vector_weight, lexical_weight : float, optional
        Merge weights. Default to ``0.6`` and ``0.4``.
    search_timeout : float or None, optional
        Per-search bound in seconds. ``None`` leaves searches unbounded unless
        the caller passes a timeout.
    """

    def __init__(
            self,
            *,
            embedding_client: EmbeddingClient,
            vector_index: VectorSearcher,
            lexical_index: LexicalSearcher,
            candidate_multiplier: float = 1.5,
            vector_weight: float = VECTOR_WEIGHT,
            lexical_weight: float = LEXICAL_WEIGHT,
            search_timeout: Optional[float] = 15.0,
        ):
        self.embedding_client = embedding_client
        self.vector_index = vector_index
        self.lexical_index = lexical_index
        self.candidate_multiplier = candidate_multiplier
        self.vector_weight = vector_weight
        self.lexical_weight = lexical_weight
        self.search_timeout = search_timeout

    @staticmethod
    def _validate(project_id: str, query: str, k: int) -> None:
        if not project_id or not str(project_id).strip():
            raise ValidationError("Project ID is required")
        if not query or not query.strip():
            raise ValidationError("Query is required and must not be empty")
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise ValidationError("k must be a positive integer")

    def candidate_count(self, k: int) -> int:
        return max(k, math.ceil(k * self.candidate_multiplier))

    def _vector_search(self, project_id: str, query: str, k: int) -> List[ScoredChunk]:
        embedding = self.embedding_client.embed_query(query)
        return self.vector_index.search(project_id, embedding, k)

    def _lexical_search(self, project_id: str, query: str, k: int) -> List[ScoredChunk]:
        return self.lexical_index.search(project_id, query, k)

    async def _bounded(
            self,
            name: str,
            fn: Callable[[], List[ScoredChunk]],
            budget: Optional[float],
        ) -> List[ScoredChunk]:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, fn), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning("%s search timed out after %ss", name, budget)
        except Exception as exc:
            logger.warning("%s search failed: %s", name, exc)
        return []

    async def aretrieve(
            self,
            project_id: str,
            query: str,
            k: int,
            *,
            timeout: Optional[float] = None,
        ) -> RetrievalResult:
        """Retrieve the ``k`` most relevant chunks for ``query``.

        Parameters
        ----------
        project_id : str
            Project to search.
        query : str
            Free-text query.
        k : int
            Maximum number of merged hits.
        timeout : float or None, optional
            Caller budget in seconds for the whole retrieval.

        Returns
        -------
        RetrievalResult
            Merged hits and context pack.

        Raises
        ------
        ValidationError
            If ``project_id`` or ``query`` is empty, or ``k`` is not a
            positive integer.
        """
        self._validate(project_id, query, k)

        query = query.strip()
        search_k = self.candidate_count(k)

        budgets = [b for b in (self.search_timeout, timeout) if b is not None]
        budget = min(budgets) if budgets else None
        started = time.monotonic()

        vector_hits, lexical_hits = await asyncio.gather(
            self._bounded("Vector", lambda: self._vector_search(project_id, query, search_k), budget),
            self._bounded("Lexical", lambda: self._lexical_search(project_id, query, search_k), budget),
        )

        chunks = merge_results(
            vector_hits,
            lexical_hits,
            k,
            vector_weight=self.vector_weight,
            lexical_weight=self.lexical_weight,
        )
        logger.info(
            "Retrieved %d chunks for project %s (vector=%d, lexical=%d) in %.2fs",
            len(chunks), project_id, len(vector_hits), len(lexical_hits), time.monotonic() - started,
        )
        return RetrievalResult(chunks=chunks, context_pack=build_context_pack(chunks))

    def retrieve(
            self,
            project_id: str,
            query: str,
            k: int,
            *,
            timeout: Optional[float] = None,
        ) -> RetrievalResult:
        """Synchronous wrapper around :meth:`aretrieve`.

        Raises
        ------
        RuntimeError
            If called from a running event loop; use :meth:`aretrieve` there.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.aretrieve(project_id, query, k, timeout=timeout))
        raise RuntimeError("retrieve() cannot be called from a running event loop; await aretrieve() instead")


__all__ = ["RetrievalPipeline", "RetrievalResult"]
