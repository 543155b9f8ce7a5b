"""magic_kb.app.container

Composition root for the knowledge base.

This module is the single place where concrete implementations are wired
together from configuration (token counter, chunker, embedder, document
store, indexes and the three pipelines). Components are constructed lazily
and cached on first access so every request shares one store and one
embedding client.

Notes
-----
Importing this module opens no files and makes no network calls. The
embedding provider and the document store are only built when a pipeline
first needs them.

Examples
--------
>>> from magic_kb.config import GlobalConfig
>>> from magic_kb.app.container import build_container
>>> container = build_container(GlobalConfig.load("config/config.yaml"))
>>> container.ingestion_pipeline.ingest("project-1", "text", "# Notes\\n\\nHello")
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping


@dataclass(frozen=True)
class KnowledgeBaseContainer:
    """Lazily built runtime components shared by the API and scripts.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`magic_kb.config.GlobalConfig`).
    """

    config: Any

    @cached_property
    def token_counter(self) -> Any:
        """Token counter from ``config.tokenization`` (word-ratio when empty)."""
        from magic_kb.common.tokenisation import create_token_counter

        return create_token_counter(_as_mapping(getattr(self.config, "tokenization", {})))

    @cached_property
    def chunker(self) -> Any:
        """Return the heading chunker configured from ``config.chunking``."""
        from magic_kb.retrieval.text_splitter import HeadingChunker

        return HeadingChunker.from_config_dict(
            dict(_as_mapping(self.config.chunking)),
            token_counter=self.token_counter,
        )

    @cached_property
    def embedder(self) -> Any:
        """Return the embedding model wrapper.

        Returns
        -------
        Any
            Configured :class:`~magic_kb.retrieval.embedder.BaseEmbedder`.
        """
        from magic_kb.retrieval.embedder import create_embedder

        section = _as_mapping(self.config.embedder)
        return create_embedder(section)

    @cached_property
    def embedding_client(self) -> Any:
        """Return the batching embedding client shared by all pipelines."""
        from magic_kb.retrieval.embedder import DEFAULT_BATCH_SIZE, EmbeddingClient

        section = _as_mapping(self.config.embedder)
        ingestion = _as_mapping(self.config.ingestion)
        return EmbeddingClient(
            self.embedder,
            batch_size=int(section.get("embed_batch_size", DEFAULT_BATCH_SIZE)),
            timeout=ingestion.get("embedding_timeout"),
        )

    @cached_property
    def doc_store(self) -> Any:
        """Return the document store.

        A relative ``doc_store.persist_path`` is resolved against the config
        file directory.
        """
        from magic_kb.retrieval.document_store_factory import build_document_store

        section = _as_mapping(self.config.doc_store)
        persist_path = section.get("persist_path")
        resolve = getattr(self.config, "resolve_path", None)
        if persist_path and callable(resolve):
            persist_path = resolve(persist_path)
        return build_document_store(section, persist_path=persist_path)

    @cached_property
    def asset_store(self) -> Any:
        from magic_kb.retrieval.asset_store import AssetStore

        return AssetStore(self.doc_store)

    @cached_property
    def vector_index(self) -> Any:
        from magic_kb.retrieval.vector_store import ChunkVectorIndex

        return ChunkVectorIndex(self.doc_store)

    @cached_property
    def lexical_index(self) -> Any:
        from magic_kb.retrieval.lexical_index import BM25LexicalIndex

        section = _as_mapping(self.config.retrieval)
        return BM25LexicalIndex(self.doc_store, language=section.get("language", "en"))

    @cached_property
    def ingestion_pipeline(self) -> Any:
        """Return the fully wired ingestion pipeline."""
        from magic_kb.pipelines.ingestion_pipeline import IngestionPipeline

        section = _as_mapping(self.config.ingestion)
        return IngestionPipeline(
            chunker=self.chunker,
            embedding_client=self.embedding_client,
            asset_store=self.asset_store,
            max_file_bytes=section["max_file_bytes"],
            fetch_timeout=section["fetch_timeout"],
            user_agent=section["user_agent"],
        )

    @cached_property
    def retrieval_pipeline(self) -> Any:
        """Return the fully wired hybrid retrieval pipeline."""
        from magic_kb.pipelines.retrieval_pipeline import RetrievalPipeline

        section = _as_mapping(self.config.retrieval)
        return RetrievalPipeline(
            embedding_client=self.embedding_client,
            vector_index=self.vector_index,
            lexical_index=self.lexical_index,
            candidate_multiplier=section["candidate_multiplier"],
            vector_weight=section["vector_weight"],
            lexical_weight=section["lexical_weight"],
            search_timeout=section["search_timeout"],
        )

    @cached_property
    def backfill(self) -> Any:
        """Return the embedding backfill job."""
        from magic_kb.pipelines.index_pipeline import EmbeddingBackfill

        return EmbeddingBackfill(store=self.doc_store, embedding_client=self.embedding_client)

    def close(self) -> None:
        """Release the embedding worker threads if the client was ever built."""
        client = self.__dict__.get("embedding_client")
        if client is not None:
            client.close()


def build_container(config: Any) -> KnowledgeBaseContainer:
    """Create a :class:`~magic_kb.app.container.KnowledgeBaseContainer`.

    Single entry point for the FastAPI startup hook, scripts and tests.
    """

    return KnowledgeBaseContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Return ``obj`` as a mapping (``None`` becomes ``{}``).

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if obj is None:
        return {}

    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Config section must be a mapping, got {type(obj).__name__}")


__all__ = ["KnowledgeBaseContainer", "build_container"]
