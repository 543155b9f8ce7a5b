"""magic_kb.pipelines.index_pipeline

Embedding backfill for chunks stored without vectors.

Chunks are stored without embeddings when the provider fails during
ingestion. :class:`EmbeddingBackfill` selects every such chunk in a project,
embeds the texts through the same :class:`~magic_kb.retrieval.embedder.EmbeddingClient`
used inline, and attaches the vectors. Nothing is written unless every chunk
received a vector.

Classes
-------
BackfillResult
    Number of chunks indexed.
EmbeddingBackfill
    Backfill entry point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from magic_kb.common.errors import EmbeddingError, ValidationError
from magic_kb.retrieval.document_store_factory import KVDocumentStore
from magic_kb.retrieval.embedder import EmbeddingClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackfillResult:
    indexed_count: int

    def to_dict(self) -> dict:
        return {"indexed_count": self.indexed_count}


class EmbeddingBackfill:
    """Embed a project's chunks that have no vector yet.

    Parameters
    ----------
    store : KVDocumentStore
        Document store holding the chunks.
    embedding_client : EmbeddingClient
        Client used for embedding.
    """

    def __init__(self, *, store: KVDocumentStore, embedding_client: EmbeddingClient):
        self.store = store
        self.embedding_client = embedding_client

    def run(self, project_id: str) -> BackfillResult:
        """Backfill embeddings for ``project_id``.

        Returns
        -------
        BackfillResult
            Number of chunks that received an embedding.

        Raises
        ------
        ValidationError
            If ``project_id`` is empty.
        EmbeddingError
            If the provider fails or returns a different number of vectors
            than requested. No chunk is updated.
        StorageError
            If the document store fails.
        """
        if not project_id or not str(project_id).strip():
            raise ValidationError("Project ID is required")

        pending = self.store.list_chunks(project_id, has_embedding=False)
        if not pending:
            logger.info("No chunks need embeddings in project %s", project_id)
            return BackfillResult(indexed_count=0)

        logger.info("Backfilling embeddings for %d chunks in project %s", len(pending), project_id)
        vectors = self.embedding_client.embed([c.text for c in pending])

        if len(vectors) != len(pending):
            raise EmbeddingError(
                f"Embedding count mismatch: expected {len(pending)}, got {len(vectors)}",
                user_message="Embedding service returned an unexpected number of vectors.",
            )

        updated = self.store.update_embeddings([(c.id, v) for c, v in zip(pending, vectors)])
        logger.info("Indexed %d chunks in project %s", updated, project_id)
        return BackfillResult(indexed_count=updated)


__all__ = ["EmbeddingBackfill", "BackfillResult"]
