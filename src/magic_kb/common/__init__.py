"""
Common building blocks shared across the knowledge base.

This package provides small, widely-used primitives (schemas, ID aliases,
token counting and the error taxonomy) intended to be imported by multiple
layers of the system.

Classes
-------
NormalizedDocument
    Canonical markdown produced from a raw source.
MarkdownChunk
    Passage produced by the heading chunker.
Asset
    Persisted source document.
Chunk
    Persisted passage with optional embedding.

Attributes
----------
ProjectId : TypeAlias
    Type alias for project identifiers.
ChunkId : TypeAlias
    Type alias for stable chunk identifiers.
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    ASSET_TYPES,
    Asset,
    Chunk,
    MarkdownChunk,
    NormalizedDocument,
)

ProjectId: TypeAlias = str
ChunkId: TypeAlias = str

__all__ = [
    "ASSET_TYPES",
    "Asset",
    "Chunk",
    "MarkdownChunk",
    "NormalizedDocument",
    "ProjectId",
    "ChunkId",
]
