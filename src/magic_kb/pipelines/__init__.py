"""magic_kb.pipelines

Pipeline orchestration components for the knowledge base.

This package contains the three entry points consumed by the HTTP surface and
the scripts. Pipelines hold only their configured components, making them
safe to reuse across requests and execution contexts.

Modules
-------
ingestion_pipeline
    Normalise, chunk, embed and persist one source.
retrieval_pipeline
    Hybrid retrieval and context pack rendering for one query.
index_pipeline
    Embedding backfill for chunks stored without vectors.
"""
