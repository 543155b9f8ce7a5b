"""magic_kb.common.schemas

Core data schemas shared across ingestion and retrieval.

These lightweight dataclasses describe the canonical shapes for normalized
source documents, the chunks derived from them, and the persisted asset and
chunk records. They are passed between normalization, chunking, embedding,
storage and retrieval components, and converted to plain dictionaries only at
the store boundary.

Classes
-------
NormalizedDocument
    Canonical markdown produced by the format normalizer.
MarkdownChunk
    A retrieval-sized passage produced by the heading chunker.
Asset
    One ingested source document, unique per ``(project_id, hash)``.
Chunk
    A persisted passage with its optional embedding.

Notes
-----
``heading_path`` is denormalized onto every chunk; the heading tree itself is
never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

AssetType = Literal["md", "html", "pdf", "docx"]
ASSET_TYPES: tuple[str, ...] = ("md", "html", "pdf", "docx")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NormalizedDocument:
    """Result of converting a raw source into canonical markdown.

    Attributes
    ----------
    markdown : str
        Canonical markdown body.
    title : str or None
        Title extracted from the source, if any.
    headings : list[str]
        Heading texts discovered in the content region (HTML sources only).
    pages : int or None
        Page count for paginated sources (PDF).
    """
    markdown: str
    title: Optional[str] = None
    headings: List[str] = field(default_factory=list)
    pages: Optional[int] = None


@dataclass
class MarkdownChunk:
    """A passage produced by :class:`~magic_kb.retrieval.text_splitter.HeadingChunker`.

    Attributes
    ----------
    chunk_id : str
        Stable identifier, deterministic for identical markdown.
    text : str
        Passage markdown, trimmed.
    tokens : int
        Estimated token count.
    section : str or None
        Owning heading title; ``None`` for the synthetic Introduction.
    heading_path : list[str]
        Heading titles from the document root down to the owning heading.
    """
    chunk_id: str
    text: str
    tokens: int
    section: Optional[str] = None
    heading_path: List[str] = field(default_factory=list)


@dataclass
class Asset:
    """A single ingested source document.

    Attributes
    ----------
    project_id : str
        Owning project.
    type : str
        One of :data:`ASSET_TYPES`.
    title : str
        Display title.
    markdown : str
        Full canonical markdown body.
    hash : str
        SHA-256 hex digest of ``markdown``.
    id : str
        Storage identifier. Defaults to a random UUID4 hex string.
    created_at : datetime
        Creation timestamp (UTC).
    source_url : str or None
        Origin URL for fetched sources.
    """
    project_id: str
    type: str
    title: str
    markdown: str
    hash: str
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    source_url: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "title": self.title,
            "markdown": self.markdown,
            "hash": self.hash,
            "created_at": self.created_at.isoformat(),
            "source_url": self.source_url,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Asset":
        return cls(
            id=record["id"],
            project_id=record["project_id"],
            type=record["type"],
            title=record["title"],
            markdown=record["markdown"],
            hash=record["hash"],
            created_at=datetime.fromisoformat(record["created_at"]),
            source_url=record.get("source_url"),
        )


@dataclass
class Chunk:
    """A persisted, retrieval-sized passage.

    Attributes
    ----------
    project_id : str
        Owning project.
    asset_id : str or None
        Owning asset. ``None`` for custom passages created outside ingestion.
    chunk_id : str
        Stable passage identifier, distinct from ``id``.
    text : str
        Passage markdown.
    tokens : int
        Estimated token count.
    section : str or None
        Section label.
    heading_path : list[str]
        Heading titles from the document root down to the owning heading.
    embedding : list[float] or None
        Embedding vector, if generated.
    id : str
        Storage identifier.
    created_at : datetime
        Creation timestamp (UTC).
    updated_at : datetime or None
        Timestamp of the last embedding backfill.
    """
    project_id: str
    asset_id: Optional[str]
    chunk_id: str
    text: str
    tokens: int
    section: Optional[str] = None
    heading_path: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @classmethod
    def from_markdown_chunk(
            cls,
            chunk: MarkdownChunk,
            *,
            project_id: str,
            asset_id: Optional[str],
            embedding: Optional[List[float]] = None,
        ) -> "Chunk":
        return cls(
            project_id=project_id,
            asset_id=asset_id,
            chunk_id=chunk.chunk_id,
            text=chunk.text,
            tokens=chunk.tokens,
            section=chunk.section,
            heading_path=list(chunk.heading_path),
            embedding=list(embedding) if embedding else None,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "asset_id": self.asset_id or "",
            "chunk_id": self.chunk_id,
            "text": self.text,
            "tokens": self.tokens,
            "section": self.section,
            "heading_path": list(self.heading_path),
            "has_embedding": self.has_embedding,
            "embedding": list(self.embedding) if self.embedding else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Chunk":
        updated_at = record.get("updated_at")
        return cls(
            id=record["id"],
            project_id=record["project_id"],
            asset_id=record.get("asset_id") or None,
            chunk_id=record["chunk_id"],
            text=record["text"],
            tokens=int(record.get("tokens", 0)),
            section=record.get("section"),
            heading_path=list(record.get("heading_path") or []),
            embedding=record.get("embedding") or None,
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
