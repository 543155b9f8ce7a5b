"""magic_kb.retrieval.lexical_index

Keyword search over chunk text using BM25.

Each project's chunks are indexed with LlamaIndex's
:class:`~llama_index.retrievers.bm25.BM25Retriever`. Indexes are built lazily
on first search and rebuilt when the project's chunk set changes.

Query terms are lower-cased and split on whitespace; terms of two characters
or fewer are dropped and at most ten terms are used. A query with no usable
terms returns no results. Only strictly positive BM25 scores are returned;
ties keep the chunks' storage order.

Classes
-------
BM25LexicalIndex
    Per-project BM25 search over a document store.

Functions
---------
extract_search_terms
    Normalise a query into the terms used for scoring.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Tuple

from llama_index.core.schema import TextNode
from llama_index.retrievers.bm25 import BM25Retriever

from magic_kb.retrieval.document_store_factory import KVDocumentStore
from magic_kb.retrieval.types import ScoredChunk

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3
MAX_TERMS = 10


def extract_search_terms(query: str) -> List[str]:
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH][:MAX_TERMS]


class BM25LexicalIndex:
    """BM25 keyword search over a project's chunks.

    Parameters
    ----------
    store : KVDocumentStore
        Document store holding the chunks.
    language : str, optional
        Stop-word language passed to ``BM25Retriever``. Defaults to ``"en"``.
    """

    def __init__(self, store: KVDocumentStore, *, language: str = "en"):
        self.store = store
        self.language = language
        self._cache: Dict[str, Tuple[Tuple[str, ...], List[TextNode]]] = {}
        self._lock = threading.Lock()

    def _nodes(self, project_id: str) -> List[TextNode]:
        chunks = self.store.list_chunks(project_id)
        signature = tuple(c.id for c in chunks)

        with self._lock:
            cached = self._cache.get(project_id)
            if cached is not None and cached[0] == signature:
                return cached[1]

            nodes = [
                TextNode(
                    id_=c.id,
                    text=c.text,
                    metadata={
                        "chunk_id": c.chunk_id,
                        "heading_path": list(c.heading_path),
                        "position": position,
                    },
                    excluded_embed_metadata_keys=["chunk_id", "heading_path", "position"],
                    excluded_llm_metadata_keys=["chunk_id", "heading_path", "position"],
                )
                for position, c in enumerate(chunks)
            ]
            self._cache[project_id] = (signature, nodes)
            logger.debug("Indexed %d chunks for lexical search in project %s", len(nodes), project_id)
            return nodes

    def search(self, project_id: str, query: str, k: int) -> List[ScoredChunk]:
        """Return up to ``k`` chunks matching ``query``.

        Parameters
        ----------
        project_id : str
            Project to search.
        query : str
            Free-text query.
        k : int
            Maximum number of results.

        Returns
        -------
        list[ScoredChunk]
            Hits with positive BM25 scores, highest first.

        Raises
        ------
        ValueError
            If ``project_id`` or ``query`` is empty, or ``k`` is not positive.
        """
        if not project_id:
            raise ValueError("Project ID is required")
        if not query or not query.strip():
            raise ValueError("Query is required and must not be empty")
        if k <= 0:
            raise ValueError("k must be a positive integer")

        terms = extract_search_terms(query.strip())
        if not terms:
            return []

        nodes = self._nodes(project_id)
        if not nodes:
            return []

        retriever = BM25Retriever.from_defaults(
            nodes=nodes,
            similarity_top_k=len(nodes),
            language=self.language,
        )
        # rank every node; equal scores keep stored order before the cut to k
        hits = retriever.retrieve(" ".join(terms))

        results = [
            (hit.node.metadata["position"], hit)
            for hit in hits
            if hit.score is not None and hit.score > 0
        ]
        results.sort(key=lambda item: (-item[1].score, item[0]))

        return [
            ScoredChunk(
                chunk_id=hit.node.metadata["chunk_id"],
                score=float(hit.score),
                text=hit.node.get_content(),
                heading_path=list(hit.node.metadata.get("heading_path") or []),
            )
            for _, hit in results[:k]
        ]

    def lexical_stats(self, project_id: str) -> Dict[str, Any]:
        """Return ``total_chunks`` and ``average_text_length`` for ``project_id``."""
        chunks = self.store.list_chunks(project_id)
        average = round(sum(len(c.text) for c in chunks) / len(chunks)) if chunks else 0
        return {"total_chunks": len(chunks), "average_text_length": average}


__all__ = ["BM25LexicalIndex", "extract_search_terms"]
