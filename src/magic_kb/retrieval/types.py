"""magic_kb.retrieval.types

Shared type definitions for the retrieval layer.

This module defines the result records exchanged between the indexes, the
hybrid merger and the context pack builder, plus protocol abstractions used
to decouple the retrieval pipeline from concrete index classes.

Classes
-------
ScoredChunk
    A chunk returned by one index with that index's raw score.
HybridChunk
    A merged chunk with its combined score and originating method.
VectorSearcher
    Protocol for embedding-based search.
LexicalSearcher
    Protocol for keyword search.
"""

from dataclasses import dataclass, field, replace
from typing import List, Literal, Protocol, Sequence

ResultSource = Literal["vector", "lexical", "both"]


@dataclass(frozen=True)
class ScoredChunk:
    """A single index hit.

    Attributes
    ----------
    chunk_id : str
        Stable passage identifier.
    score : float
        Index-specific relevance score (higher is better).
    text : str
        Passage markdown.
    heading_path : list[str]
        Heading breadcrumb of the passage.
    """
    chunk_id: str
    score: float
    text: str
    heading_path: List[str] = field(default_factory=list)

    def with_score(self, score: float) -> "ScoredChunk":
        return replace(self, score=score)


@dataclass(frozen=True)
class HybridChunk:
    """A merged hit.

    Attributes
    ----------
    chunk_id : str
        Stable passage identifier.
    score : float
        Weighted, normalized score.
    text : str
        Passage markdown.
    heading_path : list[str]
        Heading breadcrumb of the passage.
    source : {"vector", "lexical", "both"}
        Which index (or both) produced the hit.
    """
    chunk_id: str
    score: float
    text: str
    heading_path: List[str] = field(default_factory=list)
    source: ResultSource = "vector"

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "score": self.score,
            "text": self.text,
            "heading_path": list(self.heading_path),
            "source": self.source,
        }


class VectorSearcher(Protocol):
    def search(self, project_id: str, query_embedding: Sequence[float], k: int) -> List[ScoredChunk]:
        ...


class LexicalSearcher(Protocol):
    def search(self, project_id: str, query: str, k: int) -> List[ScoredChunk]:
        ...
