"""magic_kb

Magic KB knowledge base package.

This package contains the building blocks for a project-scoped knowledge
base: format normalisation of heterogeneous sources to markdown, heading-aware
chunking, embedding with graceful degradation, a hash-deduplicated asset
store, and hybrid vector/lexical retrieval with a rendered context pack.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
app
    Application container and HTTP surface.
pipelines
    Ingestion, retrieval and embedding backfill orchestration.
retrieval
    Normalisers, chunker, embedder, stores, indexes and the hybrid merger.
common
    Shared schemas, token counting and the error taxonomy.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
KnowledgeBaseContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~magic_kb.app.container.KnowledgeBaseContainer`.
IngestionPipeline
    Ingestion entry point.
RetrievalPipeline
    Hybrid retrieval entry point.
EmbeddingBackfill
    Embedding backfill entry point.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("magic-kb")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import KnowledgeBaseContainer, build_container
from .pipelines.ingestion_pipeline import IngestionPipeline
from .pipelines.retrieval_pipeline import RetrievalPipeline
from .pipelines.index_pipeline import EmbeddingBackfill

__all__ = [
    "__version__",
    "GlobalConfig",
    "KnowledgeBaseContainer",
    "build_container",
    "IngestionPipeline",
    "RetrievalPipeline",
    "EmbeddingBackfill",
]
