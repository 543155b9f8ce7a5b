"""
Retrieval layer of the knowledge base.

This package covers everything needed to turn raw sources into searchable
passages and to fetch the most relevant passages for a query. It includes
source loaders and format converters, the heading chunker, embedding model
wrappers, the document store, the vector and lexical indexes, the hybrid
merger and the context pack builder.

Submodules
----------
document_loader
    Fetches URL sources and sniffs upload types.
document_preprocessor
    Markdown and HTML normalisation, and type dispatch.
layout_inference
    PDF and DOCX conversion with heuristic structure inference.
text_splitter
    Heading-aware, token-bounded chunking.
embedder
    Embedding model wrappers and the batching embedding client.
document_store_factory
    Key-value backed asset and chunk persistence.
asset_store
    Hash-deduplicated get-or-create of assets.
vector_store
    Cosine-similarity search over chunk embeddings.
lexical_index
    BM25 keyword search over chunk text.
retriever
    Hybrid merge of vector and lexical results.
context_pack
    Rendering of merged results for a generation step.
types
    Result records and index protocols.
"""
