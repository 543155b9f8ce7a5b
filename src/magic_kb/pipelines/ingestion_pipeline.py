"""magic_kb.pipelines.ingestion_pipeline

Ingestion orchestration: normalise, chunk, embed and persist one source.

This module defines the :class:`IngestionPipeline`, the ingestion entry point
used by the HTTP surface and the scripts.

Request validation happens before any side effect. Normalisation and chunking
complete before anything is written, so a malformed source never leaves a
partial asset behind. Re-ingesting content whose canonical markdown hashes to
an existing asset returns that asset and its chunk count without embedding or
writing anything. Embedding failures degrade: chunks are stored without
vectors and can be backfilled later by
:class:`~magic_kb.pipelines.index_pipeline.EmbeddingBackfill`.

Classes
-------
IngestionResult
    Outcome of one ingestion.
IngestionPipeline
    Orchestrates loader → normaliser → chunker → embedder → asset store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from magic_kb.common.errors import EmbeddingError, FormatError, ValidationError
from magic_kb.common.schemas import ASSET_TYPES, NormalizedDocument
from magic_kb.retrieval.asset_store import AssetStore
from magic_kb.retrieval.document_loader import (
    DEFAULT_MAX_BYTES,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    check_payload_size,
    fetch_url,
    sniff_asset_type,
)
from magic_kb.retrieval.document_preprocessor import html_to_markdown, normalize_document
from magic_kb.retrieval.embedder import EmbeddingClient
from magic_kb.retrieval.text_splitter import HeadingChunker

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("text", "url", "file")
TEXT_TYPES = ("md", "html")
DEFAULT_TITLE = "Untitled Document"


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of one ingestion.

    Attributes
    ----------
    asset_id : str
        Id of the created or existing asset.
    chunk_count : int
        Number of chunks stored for the asset.
    is_new : bool
        ``False`` when the content was already ingested.
    embedded : bool
        Whether the chunks were stored with embeddings.
    title : str
        Asset title.
    """
    asset_id: str
    chunk_count: int
    is_new: bool
    embedded: bool
    title: str

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "chunk_count": self.chunk_count,
            "is_new": self.is_new,
            "embedded": self.embedded,
            "title": self.title,
        }


class IngestionPipeline:
    """Ingest sources into a project's knowledge base.

    Parameters
    ----------
    chunker : HeadingChunker
        Markdown chunker.
    embedding_client : EmbeddingClient
        Batched embedding client.
    asset_store : AssetStore
        Hash-deduplicating asset gateway.
    max_file_bytes : int, optional
        Upload ceiling in bytes. Defaults to 10 MiB.
    fetch_timeout : float, optional
        URL fetch timeout in seconds. Defaults to ``30``.
    user_agent : str, optional
        ``User-Agent`` header for URL fetches.
    """

    def __init__(
            self,
            *,
            chunker: HeadingChunker,
            embedding_client: EmbeddingClient,
            asset_store: AssetStore,
            max_file_bytes: int = DEFAULT_MAX_BYTES,
            fetch_timeout: float = DEFAULT_TIMEOUT,
            user_agent: str = DEFAULT_USER_AGENT,
        ):
        self.chunker = chunker
        self.embedding_client = embedding_client
        self.asset_store = asset_store
        self.max_file_bytes = max_file_bytes
        self.fetch_timeout = fetch_timeout
        self.user_agent = user_agent

    def _validate(
            self,
            project_id: str,
            source_kind: str,
            payload,
            declared_type: Optional[str],
        ) -> None:
        if not project_id or not str(project_id).strip():
            raise ValidationError("Project ID is required")
        if source_kind not in SOURCE_KINDS:
            raise ValidationError(
                f"Invalid source kind {source_kind!r}",
                user_message=f"Source kind must be one of: {', '.join(SOURCE_KINDS)}.",
            )
        if payload is None or (isinstance(payload, (str, bytes, bytearray)) and not payload):
            raise ValidationError(
                "Empty payload",
                user_message="File is required." if source_kind == "file" else "Source content is required.",
            )
        if declared_type is not None and declared_type not in ASSET_TYPES:
            raise ValidationError(
                f"Unknown asset type {declared_type!r}",
                user_message=f"Asset type must be one of: {', '.join(ASSET_TYPES)}.",
            )
        if source_kind == "text":
            if not isinstance(payload, str) or not payload.strip():
                raise ValidationError("Text content is required")
            if declared_type not in (None, *TEXT_TYPES):
                raise ValidationError(
                    f"Text sources cannot declare type {declared_type!r}",
                    user_message="Text sources must be 'md' or 'html'.",
                )
        if source_kind == "url":
            if not isinstance(payload, str):
                raise ValidationError("Valid URL is required")
            if declared_type not in (None, "html"):
                raise ValidationError(
                    f"URL sources cannot declare type {declared_type!r}",
                    user_message="URL sources must be HTML.",
                )
        if source_kind == "file":
            if not isinstance(payload, (bytes, bytearray)):
                raise ValidationError("File payload must be bytes")
            check_payload_size(len(payload), self.max_file_bytes)

    def _normalize(
            self,
            source_kind: str,
            payload,
            declared_type: Optional[str],
            filename: Optional[str],
            fetch_timeout: float,
        ) -> tuple[str, NormalizedDocument, Optional[str]]:
        if source_kind == "url":
            page = fetch_url(payload, timeout=fetch_timeout, user_agent=self.user_agent)
            return "html", html_to_markdown(page.html), page.url

        if source_kind == "text":
            asset_type = declared_type or "md"
            return asset_type, normalize_document(payload, asset_type), None

        asset_type = declared_type or sniff_asset_type(bytes(payload), filename)
        logger.info("Processing %s upload %s (%.2fKB)", asset_type, filename or "<unnamed>", len(payload) / 1024)
        return asset_type, normalize_document(bytes(payload), asset_type), None

    def _embed(self, texts: List[str], deadline: Optional[float]) -> Optional[List[List[float]]]:
        if deadline is not None and time.monotonic() >= deadline:
            logger.warning("Request deadline passed before embedding; storing %d chunks without vectors", len(texts))
            return None
        try:
            return self.embedding_client.embed(texts)
        except EmbeddingError as exc:
            logger.warning("Embedding failed, storing %d chunks without vectors: %s", len(texts), exc)
            return None

    def ingest(
            self,
            project_id: str,
            source_kind: str,
            payload,
            declared_type: Optional[str] = None,
            *,
            title: Optional[str] = None,
            filename: Optional[str] = None,
            timeout: Optional[float] = None,
        ) -> IngestionResult:
        """Ingest one source.

        Parameters
        ----------
        project_id : str
            Owning project.
        source_kind : {"text", "url", "file"}
            How ``payload`` should be interpreted.
        payload : str or bytes
            Text content, a URL, or uploaded file bytes.
        declared_type : {"md", "html", "pdf", "docx"} or None, optional
            Asset type. Text defaults to ``"md"``, URLs are always ``"html"``
            and files are sniffed from ``filename`` or their signature.
        title : str or None, optional
            Explicit title. Falls back to the extracted title, then
            ``"Untitled Document"``.
        filename : str or None, optional
            Original filename of an upload.
        timeout : float or None, optional
            Overall budget in seconds. Bounds the URL fetch; once exhausted,
            chunks are stored without embeddings.

        Returns
        -------
        IngestionResult
            Asset id and chunk count.

        Raises
        ------
        ValidationError
            For malformed requests (including oversized uploads).
        FormatError
            If the source cannot be converted or has no readable content.
        FetchError
            If a URL source cannot be fetched.
        StorageError
            If the document store fails.
        """
        self._validate(project_id, source_kind, payload, declared_type)

        deadline = time.monotonic() + timeout if timeout is not None else None
        fetch_timeout = self.fetch_timeout
        if deadline is not None:
            fetch_timeout = max(0.001, min(fetch_timeout, deadline - time.monotonic()))

        asset_type, document, source_url = self._normalize(
            source_kind, payload, declared_type, filename, fetch_timeout
        )
        if not document.markdown.strip():
            raise FormatError(
                "Source produced no readable content",
                user_message="No readable content found in the source.",
            )

        chunks = self.chunker.split(document.markdown)
        resolved_title = (title or "").strip() or document.title or DEFAULT_TITLE

        existing = self.asset_store.find_existing(project_id, document.markdown)
        if existing is not None:
            count = self.asset_store.count_chunks(project_id, existing.id)
            logger.info("Content already ingested as asset %s (%d chunks)", existing.id, count)
            return IngestionResult(
                asset_id=existing.id,
                chunk_count=count,
                is_new=False,
                embedded=False,
                title=existing.title,
            )

        embeddings = self._embed([c.text for c in chunks], deadline) if chunks else None

        asset, is_new = self.asset_store.get_or_create_asset(
            project_id,
            document.markdown,
            resolved_title,
            asset_type,
            chunks=chunks,
            embeddings=embeddings,
            source_url=source_url,
        )
        count = len(chunks) if is_new else self.asset_store.count_chunks(project_id, asset.id)

        logger.info(
            "Ingested %s asset %s into project %s: %d chunks (%s)",
            asset_type, asset.id, project_id, count,
            "embedded" if embeddings is not None else "without embeddings",
        )
        return IngestionResult(
            asset_id=asset.id,
            chunk_count=count,
            is_new=is_new,
            embedded=is_new and embeddings is not None,
            title=asset.title,
        )


__all__ = ["IngestionPipeline", "IngestionResult", "DEFAULT_TITLE"]
